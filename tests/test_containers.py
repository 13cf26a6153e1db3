"""Tests for model container peeking."""

import struct

import lz4.block
import pytest
import zstandard

from game_asset_sync.containers import (
    BINARY_MAGIC,
    is_animation,
    iter_chunks,
    peek_root_class,
)
from game_asset_sync.core.errors import ClassificationError


def encode_referents(values: list[int]) -> bytes:
    """Delta, zigzag and byte-interleave an i32 array the way the format stores it."""
    previous = 0
    encoded = []
    for value in values:
        delta = value - previous
        previous = value
        encoded.append((((delta << 1) ^ (delta >> 31)) & 0xFFFFFFFF).to_bytes(4, "big"))
    return bytes(word[b] for b in range(4) for word in encoded)


def chunk(name: bytes, payload: bytes, compression: str | None = None) -> bytes:
    if compression == "lz4":
        stored = lz4.block.compress(payload, store_size=False)
    elif compression == "zstd":
        stored = zstandard.ZstdCompressor().compress(payload)
    else:
        stored = payload
    compressed_len = len(stored) if compression else 0
    return struct.pack("<4sII4x", name, compressed_len, len(payload)) + stored


def inst_chunk(class_id: int, class_name: str, referents: list[int], compression: str | None = None) -> bytes:
    name = class_name.encode()
    payload = (
        struct.pack("<I", class_id)
        + struct.pack("<I", len(name))
        + name
        + b"\x00"
        + struct.pack("<I", len(referents))
        + encode_referents(referents)
    )
    return chunk(b"INST", payload, compression)


def prnt_chunk(links: list[tuple[int, int]], compression: str | None = None) -> bytes:
    children = [child for child, _ in links]
    parents = [parent for _, parent in links]
    payload = (
        b"\x00"
        + struct.pack("<I", len(links))
        + encode_referents(children)
        + encode_referents(parents)
    )
    return chunk(b"PRNT", payload, compression)


def binary_container(root_class: str, child_class: str = "Part", compression: str | None = None) -> bytes:
    header = BINARY_MAGIC + struct.pack("<HiiQ", 0, 2, 2, 0)
    return (
        header
        + inst_chunk(0, child_class, [1], compression)
        + inst_chunk(1, root_class, [0], compression)
        + prnt_chunk([(1, 0), (0, -1)], compression)
        + chunk(b"END\x00", b"</roblox>")
    )


def xml_container(root_class: str) -> bytes:
    return (
        '<roblox version="4">\n'
        f'  <Item class="{root_class}" referent="RBX0">\n'
        "    <Properties><string name=\"Name\">Root</string></Properties>\n"
        '    <Item class="Keyframe" referent="RBX1"/>\n'
        "  </Item>\n"
        "</roblox>\n"
    ).encode()


class TestBinaryContainers:
    """Test root class detection in binary containers."""

    def test_reads_root_class_of_raw_chunks(self) -> None:
        """Test that uncompressed chunks are parsed."""
        assert peek_root_class(binary_container("Model")) == "Model"

    def test_reads_root_class_of_lz4_chunks(self) -> None:
        """Test that LZ4-compressed chunks are decompressed."""
        data = binary_container("KeyframeSequence", "Keyframe", compression="lz4")
        assert peek_root_class(data) == "KeyframeSequence"

    def test_reads_root_class_of_zstd_chunks(self) -> None:
        """Test that Zstandard-compressed chunks are decompressed."""
        data = binary_container("CurveAnimation", "Folder", compression="zstd")
        assert peek_root_class(data) == "CurveAnimation"

    def test_root_is_the_object_parented_to_the_document(self) -> None:
        """Test that a child class listed first does not count as the root."""
        assert peek_root_class(binary_container("Model", child_class="KeyframeSequence")) == "Model"

    def test_iter_chunks_stops_at_end(self) -> None:
        """Test that chunk iteration stops at the END chunk."""
        data = binary_container("Model") + b"trailing garbage"
        names = [name for name, _ in iter_chunks(data)]
        assert names == [b"INST", b"INST", b"PRNT", b"END\x00"]

    def test_truncated_chunk_raises(self) -> None:
        """Test that a truncated container is a classification error."""
        data = binary_container("Model")
        with pytest.raises(ClassificationError):
            peek_root_class(data[:60])

    def test_corrupt_compressed_chunk_raises(self) -> None:
        """Test that an undecodable compressed payload is a classification error."""
        header = BINARY_MAGIC + struct.pack("<HiiQ", 0, 1, 1, 0)
        broken = struct.pack("<4sII4x", b"INST", 4, 64) + b"\xff\xff\xff\xff"
        with pytest.raises(ClassificationError):
            peek_root_class(header + broken)

    def test_container_without_parent_links_raises(self) -> None:
        """Test that a container with no root object is rejected."""
        header = BINARY_MAGIC + struct.pack("<HiiQ", 0, 1, 1, 0)
        data = header + inst_chunk(0, "Model", [0]) + chunk(b"END\x00", b"")
        with pytest.raises(ClassificationError, match="no root object"):
            peek_root_class(data)


class TestXmlContainers:
    """Test root class detection in XML containers."""

    def test_reads_root_item_class(self) -> None:
        """Test that the first top-level Item names the root class."""
        assert peek_root_class(xml_container("KeyframeSequence")) == "KeyframeSequence"

    def test_malformed_xml_raises(self) -> None:
        """Test that malformed XML is a classification error."""
        with pytest.raises(ClassificationError, match="Malformed"):
            peek_root_class(b"<roblox><Item class='Model'>")

    def test_empty_document_raises(self) -> None:
        """Test that a document without items is rejected."""
        with pytest.raises(ClassificationError, match="no root object"):
            peek_root_class(b"<roblox></roblox>")


class TestIsAnimation:
    """Test animation carrier detection."""

    def test_animation_classes(self) -> None:
        """Test that both animation carrier types are recognised."""
        assert is_animation(binary_container("KeyframeSequence"))
        assert is_animation(xml_container("CurveAnimation"))

    def test_model_is_not_animation(self) -> None:
        """Test that a regular model is not an animation."""
        assert not is_animation(binary_container("Model"))

    def test_unknown_format_raises(self) -> None:
        """Test that bytes in no container format are rejected."""
        with pytest.raises(ClassificationError, match="Unrecognised"):
            peek_root_class(b"not a model")
