"""Type definitions for the asset sync engine.

Persisted structures are TypedDicts that mirror the JSON Schema in
schemas/lockfile.schema.json. In-memory records that flow through the
pipeline are dataclasses.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TypedDict


class AssetKind(str, Enum):
    """Kind of an asset, derived from its extension and (for containers) its content."""

    IMAGE = "image"
    SVG = "svg"
    AUDIO = "audio"
    VIDEO = "video"
    MODEL = "model"
    ANIMATION = "animation"

    @property
    def upload_kind(self) -> "AssetKind":
        """Kind used when talking to a backend (vector images upload as images)."""
        if self is AssetKind.SVG:
            return AssetKind.IMAGE
        return self

    @property
    def is_image(self) -> bool:
        return self in (AssetKind.IMAGE, AssetKind.SVG)


class SyncAction(str, Enum):
    """Action assigned to each discovered asset before uploads begin."""

    UNCHANGED = "unchanged"  # hash matches the manifest, no network call
    REUSE = "reuse"  # hash already uploaded (or pending) in this run
    UPLOAD = "upload"  # first asset with a new or changed hash
    DECLARED = "declared"  # pre-declared web asset, id taken verbatim


class FailureKind(str, Enum):
    """How a failed backend call should be treated."""

    TRANSIENT = "transient"
    TERMINAL = "terminal"
    FATAL = "fatal"


@dataclass(frozen=True, order=True)
class AssetKey:
    """Logical key of an asset slot: (input name, path relative to the input)."""

    input_name: str
    path: str  # POSIX separators, relative to the input prefix

    def __str__(self) -> str:
        return f"{self.input_name}/{self.path}"

    @property
    def file_name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass
class DiscoveredAsset:
    """One file matched by an AssetInput.

    Attributes:
        key: Logical key of the asset
        source_path: Absolute path of the file on disk
        extension: Lowercase extension without the dot
        data: Raw bytes until preprocessing, processed bytes afterwards.
            Dropped once the asset no longer needs to be uploaded.
        kind: Classified asset kind (None until classified)
        hash: ContentHash of the processed bytes (None until hashed)
    """

    key: AssetKey
    source_path: Path
    extension: str
    data: bytes | None = None
    kind: AssetKind | None = None
    hash: str | None = None


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a backend call.

    A successful result carries the remote identifier (and a price where the
    backend reports one); a failed result carries the failure kind and a
    human-readable cause. Failed results are never persisted.
    """

    identifier: str | None = None
    price: int | None = None
    failure: FailureKind | None = None
    cause: str | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.failure is None and self.identifier is not None

    @classmethod
    def success(cls, identifier: str, price: int | None = None, attempts: int = 1) -> "UploadResult":
        return cls(identifier=identifier, price=price, attempts=attempts)

    @classmethod
    def failed(cls, failure: FailureKind, cause: str, attempts: int = 1) -> "UploadResult":
        return cls(failure=failure, cause=cause, attempts=attempts)


class ManifestEntryDict(TypedDict):
    """One persisted manifest entry."""

    hash: str  # ContentHash at the last successful upload
    id: str  # Remote identifier (e.g. rbxassetid://1234)
    format: int  # Content pipeline format tag


class ManifestDict(TypedDict):
    """Persisted manifest document (current schema version)."""

    version: int
    inputs: dict[str, dict[str, ManifestEntryDict]]
