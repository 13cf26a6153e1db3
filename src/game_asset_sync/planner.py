"""Change detection and in-run deduplication.

Every discovered asset gets exactly one SyncAction before uploads begin:

1. Declared   pre-declared web asset, identifier taken verbatim
2. Unchanged  the manifest entry for the key has the same ContentHash
3. Reuse      another asset with this hash was uploaded (or is being
              uploaded) in this run, or is on record under another key
4. Upload     first asset seen with this hash; it claims the hash

Planning runs concurrently from the processing tasks. The claim in step 4
is the only shared mutable state and goes through DedupIndex.claim(),
which makes the check-and-set atomic per hash. That is what turns N
identical files into exactly one backend call.

A hash that is on record under a different key (a renamed or copied file)
is reused from the manifest with no backend call.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field

from .core.types import AssetKey, AssetKind, DiscoveredAsset, FailureKind, SyncAction, UploadResult
from .lockfile import ENTRY_FORMAT, Manifest

logger = logging.getLogger(__name__)


@dataclass
class UploadSlot:
    """Upload of one ContentHash, pending or completed.

    Attributes:
        hash: ContentHash the slot stands for
        owner: Key of the asset that claimed the slot (None for slots seeded
            from the manifest)
        future: Resolved once with the UploadResult
    """

    hash: str
    owner: AssetKey | None = None
    future: "Future[UploadResult]" = field(default_factory=Future)

    @classmethod
    def completed(cls, hash: str, identifier: str) -> "UploadSlot":
        slot = cls(hash)
        slot.future.set_result(UploadResult.success(identifier))
        return slot

    def resolve(self, result: UploadResult) -> None:
        if not self.future.done():
            self.future.set_result(result)

    @property
    def done(self) -> bool:
        return self.future.done()

    def wait(self, timeout: float | None = None) -> UploadResult:
        return self.future.result(timeout)


class DedupIndex:
    """Thread-safe map of ContentHash -> UploadSlot with atomic claims."""

    def __init__(self) -> None:
        self._slots: dict[str, UploadSlot] = {}
        self._lock = threading.Lock()

    def seed(self, hash: str, identifier: str) -> None:
        """Record a completed upload (e.g. from the manifest) without claiming."""
        with self._lock:
            self._slots.setdefault(hash, UploadSlot.completed(hash, identifier))

    def claim(self, hash: str, key: AssetKey) -> tuple[UploadSlot, bool]:
        """Claim the slot for hash.

        Returns:
            Tuple of (slot, claimed). claimed is True only for the first
            caller; everyone else gets the existing slot.
        """
        with self._lock:
            slot = self._slots.get(hash)
            if slot is not None:
                return slot, False
            slot = UploadSlot(hash, owner=key)
            self._slots[hash] = slot
            return slot, True

    def get(self, hash: str) -> UploadSlot | None:
        with self._lock:
            return self._slots.get(hash)

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)


@dataclass
class PlannedAsset:
    """A discovered (or declared) asset with its assigned action.

    Attributes:
        key: Logical key
        action: Assigned SyncAction
        kind: Asset kind (None for declared assets)
        hash: ContentHash (None for declared assets)
        data: Processed bytes, kept only for Upload actions
        identifier: Known identifier for Unchanged and Declared actions
        slot: Upload slot for Upload and Reuse actions
    """

    key: AssetKey
    action: SyncAction
    kind: AssetKind | None = None
    hash: str | None = None
    data: bytes | None = None
    identifier: str | None = None
    slot: UploadSlot | None = None

    @property
    def drifted(self) -> bool:
        """Whether syncing this asset needs the backend."""
        return self.action in (SyncAction.REUSE, SyncAction.UPLOAD)

    def result(self, timeout: float | None = None) -> UploadResult:
        """Resolved outcome of this asset.

        Reuse actions block on the referenced upload and copy its result.
        """
        if self.identifier is not None:
            return UploadResult.success(self.identifier, attempts=0)
        if self.slot is None:
            return UploadResult.failed(FailureKind.TERMINAL, "asset was never planned", attempts=0)
        return self.slot.wait(timeout)


class Planner:
    """Assigns SyncActions against a read-only manifest.

    Args:
        manifest: Manifest loaded at the start of the run; shared
            read-only by all processing tasks
        index: Dedup index to claim hashes in. A fresh one is created
            and seeded from the manifest when omitted.
    """

    def __init__(self, manifest: Manifest, index: DedupIndex | None = None):
        self.manifest = manifest
        self.index = index if index is not None else DedupIndex()
        if index is None:
            for _, entry in manifest.items():
                if entry.format == ENTRY_FORMAT:
                    self.index.seed(entry.hash, entry.identifier)

    def declare(self, key: AssetKey, identifier: str) -> PlannedAsset:
        return PlannedAsset(key=key, action=SyncAction.DECLARED, identifier=identifier)

    def plan(self, asset: DiscoveredAsset) -> PlannedAsset:
        """Assign an action to a hashed asset.

        Safe to call concurrently from many threads.

        Raises:
            ValueError: If the asset has not been classified and hashed
        """
        if asset.hash is None or asset.kind is None:
            raise ValueError(f"Asset {asset.key} must be classified and hashed before planning")

        entry = self.manifest.get(asset.key)
        if entry is not None and entry.hash == asset.hash and entry.format == ENTRY_FORMAT:
            logger.debug("%s unchanged", asset.key)
            return PlannedAsset(
                key=asset.key,
                action=SyncAction.UNCHANGED,
                kind=asset.kind,
                hash=asset.hash,
                identifier=entry.identifier,
            )

        slot, claimed = self.index.claim(asset.hash, asset.key)
        if not claimed:
            logger.debug("%s reuses %s", asset.key, slot.owner or "a recorded upload")
            return PlannedAsset(
                key=asset.key,
                action=SyncAction.REUSE,
                kind=asset.kind,
                hash=asset.hash,
                slot=slot,
            )

        logger.debug("%s needs upload", asset.key)
        return PlannedAsset(
            key=asset.key,
            action=SyncAction.UPLOAD,
            kind=asset.kind,
            hash=asset.hash,
            data=asset.data,
            slot=slot,
        )
