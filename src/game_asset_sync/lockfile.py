"""Manifest (lockfile) store.

The manifest maps each logical asset key to the ContentHash it had at its
last successful upload and the identifier the backend assigned. It is a
human-diffable JSON document committed to source control:

    {
      "version": 2,
      "inputs": {
        "<input>": {
          "<path>": {"hash": "<sha256>", "id": "rbxassetid://1", "format": 1}
        }
      }
    }

Older layouts are migrated on load:

- v0: {"entries": {"<project-relative path>": {"hash", "asset_id"}}}
- v1: {"version": 1, "inputs": {"<input>": {"<path>": {"hash", "asset_id"}}}}
"""

import json
import logging
import os
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from .config import AssetInput
from .core.errors import ManifestError
from .core.types import AssetKey, ManifestDict, ManifestEntryDict
from .core.validator import LOCKFILE_SCHEMA, validate_with_error_details

logger = logging.getLogger(__name__)

FILE_NAME = "asset-sync.lock.json"
CURRENT_VERSION = 2

# Format tag of the content pipeline that produced an entry's hash. Entries
# with another tag are re-processed and re-uploaded.
ENTRY_FORMAT = 1


@dataclass(frozen=True)
class ManifestEntry:
    hash: str
    identifier: str
    format: int = ENTRY_FORMAT


class Manifest:
    """Immutable mapping of AssetKey -> ManifestEntry.

    merged() and pruned() return new manifests; the loaded manifest is
    shared read-only between processing tasks during a run.
    """

    def __init__(self, entries: Mapping[AssetKey, ManifestEntry] | None = None):
        self._entries: dict[AssetKey, ManifestEntry] = dict(entries or {})

    def get(self, key: AssetKey) -> ManifestEntry | None:
        return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AssetKey]:
        return iter(sorted(self._entries))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self._entries == other._entries

    def items(self) -> list[tuple[AssetKey, ManifestEntry]]:
        return sorted(self._entries.items())

    def merged(self, results: Mapping[AssetKey, ManifestEntry]) -> "Manifest":
        """Upsert the entries of successfully resolved assets.

        Keys absent from results (failed or unattempted assets) keep their
        previous entry.
        """
        entries = dict(self._entries)
        entries.update(results)
        return Manifest(entries)

    def pruned(self, keep: Iterable[AssetKey], inputs: Iterable[str]) -> "Manifest":
        """Drop entries of inputs no longer configured and keys no longer discovered."""
        keep = set(keep)
        inputs = set(inputs)
        entries = {
            key: entry
            for key, entry in self._entries.items()
            if key.input_name in inputs and key in keep
        }
        dropped = len(self._entries) - len(entries)
        if dropped:
            logger.info("Pruned %d stale manifest entries", dropped)
        return Manifest(entries)

    def to_document(self) -> ManifestDict:
        inputs: dict[str, dict[str, ManifestEntryDict]] = {}
        for key, entry in self.items():
            inputs.setdefault(key.input_name, {})[key.path] = {
                "hash": entry.hash,
                "id": entry.identifier,
                "format": entry.format,
            }
        return {"version": CURRENT_VERSION, "inputs": inputs}

    @classmethod
    def from_document(cls, document: ManifestDict) -> "Manifest":
        entries = {}
        for input_name, paths in document["inputs"].items():
            for path, raw in paths.items():
                entries[AssetKey(input_name, path)] = ManifestEntry(
                    hash=raw["hash"], identifier=raw["id"], format=raw["format"]
                )
        return cls(entries)


def _legacy_identifier(asset_id: Any) -> str:
    if not isinstance(asset_id, int) or isinstance(asset_id, bool):
        raise ManifestError(f"Invalid legacy asset id: {asset_id!r}")
    return f"rbxassetid://{asset_id}"


def _legacy_entry(raw: Any) -> ManifestEntryDict:
    if not isinstance(raw, dict) or "hash" not in raw or "asset_id" not in raw:
        raise ManifestError(f"Invalid legacy manifest entry: {raw!r}")
    return {
        "hash": raw["hash"],
        "id": _legacy_identifier(raw["asset_id"]),
        "format": ENTRY_FORMAT,
    }


def _migrate_v0(document: dict[str, Any], inputs: Mapping[str, AssetInput] | None) -> ManifestDict:
    if inputs is None:
        raise ManifestError(
            "Manifest version 0 stores project-relative paths and needs the "
            "project configuration to be migrated"
        )

    entries = document["entries"]
    if not isinstance(entries, dict):
        raise ManifestError("Manifest version 0 'entries' must be an object")

    migrated: dict[str, dict[str, ManifestEntryDict]] = {}
    for raw_path, raw in entries.items():
        path = PurePosixPath(raw_path.replace("\\", "/"))

        # Attribute the path to the input with the most specific prefix
        owner = None
        for asset_input in inputs.values():
            prefix = asset_input.prefix
            if prefix == PurePosixPath(".") or path.is_relative_to(prefix):
                if owner is None or len(prefix.parts) > len(owner.prefix.parts):
                    owner = asset_input

        if owner is None:
            logger.warning("Dropping manifest entry outside every input: %s", raw_path)
            continue

        rel_path = path if owner.prefix == PurePosixPath(".") else path.relative_to(owner.prefix)
        migrated.setdefault(owner.name, {})[rel_path.as_posix()] = _legacy_entry(raw)

    return {"version": CURRENT_VERSION, "inputs": migrated}


def _migrate_v1(document: dict[str, Any]) -> ManifestDict:
    raw_inputs = document.get("inputs")
    if not isinstance(raw_inputs, dict):
        raise ManifestError("Manifest version 1 'inputs' must be an object")

    migrated: dict[str, dict[str, ManifestEntryDict]] = {}
    for input_name, paths in raw_inputs.items():
        if not isinstance(paths, dict):
            raise ManifestError(f"Manifest input '{input_name}' must be an object")
        migrated[input_name] = {path: _legacy_entry(raw) for path, raw in paths.items()}

    return {"version": CURRENT_VERSION, "inputs": migrated}


def document_version(document: Any) -> int:
    """Return the schema version of a decoded manifest document.

    Raises:
        ManifestError: If the document matches no known layout
    """
    if not isinstance(document, dict):
        raise ManifestError("Manifest must be a JSON object")
    if "version" not in document:
        if "entries" in document:
            return 0
        raise ManifestError("Manifest has no version")

    version = document["version"]
    if version not in (1, CURRENT_VERSION):
        raise ManifestError(f"Unsupported manifest version: {version!r}")
    return int(version)


def migrate(document: Any, inputs: Mapping[str, AssetInput] | None = None) -> ManifestDict:
    """Bring a decoded manifest document to the current version and validate it.

    Args:
        document: Decoded JSON document
        inputs: Configured inputs, needed to attribute v0 paths

    Returns:
        A current-version document

    Raises:
        ManifestError: If the document is malformed or cannot be migrated
    """
    version = document_version(document)

    if version == 0:
        document = _migrate_v0(document, inputs)
    elif version == 1:
        document = _migrate_v1(document)

    if version != CURRENT_VERSION:
        logger.info("Migrated manifest from version %d to %d", version, CURRENT_VERSION)

    is_valid, error_msg = validate_with_error_details(document, LOCKFILE_SCHEMA)
    if not is_valid:
        raise ManifestError(f"Invalid manifest: {error_msg}")

    return document  # type: ignore[no-any-return]


def read_document(path: Path) -> Any:
    """Read a manifest file's JSON, or None if it does not exist."""
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ManifestError(f"Failed to read manifest {path}: {e}") from e


def load(path: Path, inputs: Mapping[str, AssetInput] | None = None) -> Manifest:
    """Load the manifest at path.

    A missing file is an empty manifest. Older versions are migrated in
    memory; call save() to persist the migration.

    Raises:
        ManifestError: If the file is unreadable or malformed
    """
    document = read_document(path)
    if document is None:
        logger.debug("No manifest at %s, starting empty", path)
        return Manifest()

    manifest = Manifest.from_document(migrate(document, inputs))
    logger.debug("Loaded %d manifest entries from %s", len(manifest), path)
    return manifest


def save(manifest: Manifest, path: Path) -> None:
    """Persist the manifest atomically.

    The document is written to a temporary file next to the target and
    swapped into place, so a crash never leaves a half-written manifest.
    """
    content = json.dumps(manifest.to_document(), indent=2, sort_keys=True) + "\n"

    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise

    logger.debug("Saved %d manifest entries to %s", len(manifest), path)
