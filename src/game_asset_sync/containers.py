"""Root-object peeking for model containers.

Model files (.rbxm binary, .rbxmx XML) are used both for rigid models and
for animation clips. This module reads just enough of a container to find
the class name of its root object; it is not a scene-graph importer.

Binary layout:
    header   magic (14 bytes), version u16, class count i32,
             instance count i32, 8 reserved bytes
    chunks   name (4 bytes), compressed length u32, uncompressed length u32,
             4 reserved bytes, payload

A compressed length of zero means the payload is stored raw. Compressed
payloads are Zstandard frames (recognised by their magic) or LZ4 blocks.
"""

import logging
import struct
import xml.etree.ElementTree as ET
from collections.abc import Iterator

import lz4.block
import zstandard

from .core.errors import ClassificationError

logger = logging.getLogger(__name__)

BINARY_MAGIC = b"<roblox!\x89\xff\r\n\x1a\n"
XML_MAGIC = b"<roblox"
HEADER_SIZE = 32
CHUNK_HEADER = struct.Struct("<4sII4x")
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"

# Referent of the document root in PRNT chunks
ROOT_REFERENT = -1

# Root classes that make a container an animation clip
ANIMATION_CLASSES = frozenset({"KeyframeSequence", "CurveAnimation"})


def _decompress(payload: bytes, size: int) -> bytes:
    try:
        if payload.startswith(ZSTD_MAGIC):
            return zstandard.ZstdDecompressor().decompress(payload, max_output_size=size)
        return lz4.block.decompress(payload, uncompressed_size=size)
    except (lz4.block.LZ4BlockError, zstandard.ZstdError) as e:
        raise ClassificationError(f"Corrupt compressed chunk: {e}") from e


def iter_chunks(data: bytes) -> Iterator[tuple[bytes, bytes]]:
    """Yield (name, payload) for each chunk of a binary container.

    Raises:
        ClassificationError: If the header or a chunk is truncated or corrupt
    """
    if not data.startswith(BINARY_MAGIC) or len(data) < HEADER_SIZE:
        raise ClassificationError("Not a binary model container")

    offset = HEADER_SIZE
    while offset < len(data):
        if offset + CHUNK_HEADER.size > len(data):
            raise ClassificationError("Truncated chunk header")
        name, compressed_len, uncompressed_len = CHUNK_HEADER.unpack_from(data, offset)
        offset += CHUNK_HEADER.size

        stored_len = compressed_len or uncompressed_len
        stored = data[offset : offset + stored_len]
        if len(stored) != stored_len:
            raise ClassificationError(f"Truncated {name!r} chunk")
        offset += stored_len

        payload = _decompress(stored, uncompressed_len) if compressed_len else stored
        if len(payload) != uncompressed_len:
            raise ClassificationError(f"Chunk {name!r} has the wrong decompressed size")

        yield name, payload
        if name == b"END\x00":
            return


class _Reader:
    """Cursor over a chunk payload."""

    def __init__(self, payload: bytes):
        self.payload = payload
        self.offset = 0

    def take(self, size: int) -> bytes:
        chunk = self.payload[self.offset : self.offset + size]
        if len(chunk) != size:
            raise ClassificationError("Chunk payload ended unexpectedly")
        self.offset += size
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return int.from_bytes(self.take(4), "little")

    def string(self) -> str:
        return self.take(self.u32()).decode("utf-8", errors="replace")

    def referents(self, count: int) -> list[int]:
        """Read an interleaved, zigzag-encoded, delta-accumulated i32 array."""
        raw = self.take(count * 4)
        referents = []
        previous = 0
        for i in range(count):
            value = int.from_bytes(raw[i::count], "big")
            previous += (value >> 1) ^ -(value & 1)
            referents.append(previous)
        return referents


def _binary_root_class(data: bytes) -> str:
    classes: dict[int, str] = {}
    links: list[tuple[int, int]] = []

    for name, payload in iter_chunks(data):
        reader = _Reader(payload)
        if name == b"INST":
            reader.u32()  # class id
            class_name = reader.string()
            reader.u8()  # object format
            count = reader.u32()
            for referent in reader.referents(count):
                classes[referent] = class_name
        elif name == b"PRNT":
            reader.u8()  # version
            count = reader.u32()
            children = reader.referents(count)
            parents = reader.referents(count)
            links.extend(zip(children, parents))

    for child, parent in links:
        if parent == ROOT_REFERENT:
            try:
                return classes[child]
            except KeyError:
                raise ClassificationError(f"Root object {child} has no class") from None

    raise ClassificationError("Container has no root object")


def _xml_root_class(data: bytes) -> str:
    try:
        document = ET.fromstring(data)
    except ET.ParseError as e:
        raise ClassificationError(f"Malformed XML container: {e}") from e

    if document.tag != "roblox":
        raise ClassificationError(f"Unexpected XML root element <{document.tag}>")

    item = document.find("Item")
    if item is None or not item.get("class"):
        raise ClassificationError("Container has no root object")
    return item.get("class", "")


def peek_root_class(data: bytes) -> str:
    """Return the class name of a container's root object.

    Raises:
        ClassificationError: If the data is not a parseable container
    """
    if data.startswith(BINARY_MAGIC):
        class_name = _binary_root_class(data)
    elif data.lstrip().startswith(XML_MAGIC):
        class_name = _xml_root_class(data)
    else:
        raise ClassificationError("Unrecognised model container")

    logger.debug("Container root class: %s", class_name)
    return class_name


def is_animation(data: bytes) -> bool:
    return peek_root_class(data) in ANIMATION_CLASSES
