"""Sync pipeline.

This module provides the main interface for a sync run:

    discover -> classify -> preprocess -> hash -> plan -> upload -> merge -> emit

The pipeline is backend-agnostic. It works with any Backend implementation
created through the BackendRegistry, or with none at all in dry-run mode.
"""

import logging
import sys
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from tqdm import tqdm

from .backends.base import Backend
from .bindings import emit, write_bindings
from .classifier import check_supported, classify
from .config import Config
from .coordinator import UploadCoordinator
from .core.errors import AssetProcessingError, SyncCancelled
from .core.hashing import content_hash
from .core.types import AssetKey, DiscoveredAsset, SyncAction, UploadResult
from .credentials import Credentials
from .discovery import DiscoveryResult, discover
from .imaging import preprocess
from .lockfile import ENTRY_FORMAT, Manifest, ManifestEntry, save
from .planner import PlannedAsset, Planner

logger = logging.getLogger(__name__)

# Placeholder used to check binding names before any identifier is known
UNRESOLVED = ""


@dataclass
class SyncReport:
    """Outcome of a sync run.

    Attributes:
        planned: Every asset with its assigned action
        results: Resolved outcome per key (empty in dry-run mode)
        failures: Key -> cause, for processing and upload failures
        duplicates: Keys that reused an upload claimed by another key in this run
        manifest: Manifest after merging (None if nothing was written)
        backend_calls: Number of distinct uploads dispatched
        bindings: Generated binding files
        dry_run: Whether the run stopped after planning
        cancelled: Whether the run was interrupted
    """

    planned: list[PlannedAsset] = field(default_factory=list)
    results: dict[AssetKey, UploadResult] = field(default_factory=dict)
    failures: dict[AssetKey, str] = field(default_factory=dict)
    duplicates: list[AssetKey] = field(default_factory=list)
    manifest: Manifest | None = None
    backend_calls: int = 0
    bindings: list[Path] = field(default_factory=list)
    dry_run: bool = False
    cancelled: bool = False

    @property
    def changed(self) -> list[AssetKey]:
        """Keys whose action needs the backend (drift, in dry-run terms)."""
        return sorted(p.key for p in self.planned if p.drifted)

    @property
    def action_counts(self) -> Counter:
        return Counter(p.action for p in self.planned)

    @property
    def ok(self) -> bool:
        if self.dry_run:
            return not self.failures and not self.changed
        return not self.failures and not self.cancelled


class SyncPipeline:
    """Main interface for a sync run.

    Example:
        >>> config = load_config(Path("."))
        >>> manifest = lockfile.load(Path(lockfile.FILE_NAME), config.inputs)
        >>> backend = BackendRegistry.create_backend("cloud", params)
        >>> report = SyncPipeline(config, backend, manifest).run()
    """

    def __init__(
        self,
        config: Config,
        backend: Backend | None = None,
        manifest: Manifest | None = None,
        manifest_path: Path | None = None,
        credentials: Credentials | None = None,
        dry_run: bool = False,
        show_progress: bool = False,
    ):
        """Initialize the pipeline.

        Args:
            config: Immutable project configuration
            backend: Upload target. Required unless dry_run is set.
            manifest: Manifest loaded at startup
            manifest_path: Where a persistent backend's manifest is saved
            credentials: Checked against the kinds that will be uploaded
                when the backend is persistent
            dry_run: Stop after planning; no uploads, no writes
            show_progress: Show a progress bar on stderr while uploading
        """
        if backend is None and not dry_run:
            raise ValueError("A backend is required unless dry_run is set")

        self.config = config
        self.backend = backend
        self.manifest = manifest if manifest is not None else Manifest()
        self.manifest_path = manifest_path
        self.credentials = credentials
        self.dry_run = dry_run
        self.show_progress = show_progress

    @property
    def persistent(self) -> bool:
        """Whether change detection runs against the manifest."""
        return self.dry_run or (self.backend is not None and self.backend.persistent)

    def run(self) -> SyncReport:
        """Run the sync.

        Returns:
            SyncReport describing every asset's outcome

        Raises:
            ConfigurationError: Before any network activity, for an invalid
                input, unsupported file, missing credential or binding
                collision
            AuthenticationError: If the backend rejected the credentials;
                the manifest is left untouched
            SyncCancelled: If interrupted before uploads began
        """
        report = SyncReport(dry_run=self.dry_run)

        discovery = discover(self.config)
        check_supported(discovery.assets)
        self._check_binding_names(discovery)

        planner = Planner(self.manifest if self.persistent else Manifest())
        report.planned = [planner.declare(k, i) for k, i in sorted(discovery.declared.items())]
        report.planned += self._process(discovery.assets, planner, report)
        report.duplicates = self._report_duplicates(report.planned)

        counts = report.action_counts
        logger.info(
            "Planned %d assets: %d upload, %d reuse, %d unchanged, %d declared",
            len(report.planned),
            counts[SyncAction.UPLOAD],
            counts[SyncAction.REUSE],
            counts[SyncAction.UNCHANGED],
            counts[SyncAction.DECLARED],
        )

        if self.dry_run:
            return report

        assert self.backend is not None
        uploads = [p for p in report.planned if p.action is SyncAction.UPLOAD]
        if self.backend.persistent and self.credentials is not None:
            self.credentials.require({p.kind for p in uploads if p.kind is not None})

        self._upload(report, uploads)

        resolved = self._resolve(report)
        if self.backend.persistent:
            report.manifest = self._merge(report, discovery)

        if not report.cancelled:
            trees = emit(resolved, self.config.codegen)
            output_paths = {name: i.output_path for name, i in self.config.inputs.items()}
            report.bindings = write_bindings(trees, output_paths, self.config.codegen)

        return report

    def _check_binding_names(self, discovery: DiscoveryResult) -> None:
        names = {asset.key: UNRESOLVED for asset in discovery.assets}
        names.update({key: UNRESOLVED for key in discovery.declared})
        emit(names, self.config.codegen)

    def _process_one(self, asset: DiscoveredAsset, planner: Planner) -> PlannedAsset:
        asset.data = asset.source_path.read_bytes()
        kind = classify(asset.data, asset.extension)
        bleed = self.config.inputs[asset.key.input_name].bleed
        asset.data, asset.kind = preprocess(asset.data, kind, bleed=bleed)
        asset.hash = content_hash(asset.data)

        planned = planner.plan(asset)
        asset.data = None
        return planned

    def _process(self, assets: list[DiscoveredAsset], planner: Planner, report: SyncReport) -> list[PlannedAsset]:
        """Classify, preprocess, hash and plan every asset in parallel."""
        planned: list[PlannedAsset] = []

        with ThreadPoolExecutor(
            max_workers=self.config.sync.process_workers, thread_name_prefix="process"
        ) as executor:
            futures = {asset.key: executor.submit(self._process_one, asset, planner) for asset in assets}
            try:
                for key, future in futures.items():
                    try:
                        planned.append(future.result())
                    except (AssetProcessingError, OSError) as e:
                        logger.error("Failed to process %s: %s", key, e)
                        report.failures[key] = str(e)
            except KeyboardInterrupt:
                executor.shutdown(wait=True, cancel_futures=True)
                raise SyncCancelled("Interrupted while processing assets") from None

        return planned

    def _report_duplicates(self, planned: list[PlannedAsset]) -> list[AssetKey]:
        duplicates = []
        for p in planned:
            if p.action is not SyncAction.REUSE or p.slot is None or p.slot.owner is None:
                continue
            duplicates.append(p.key)
            if self.config.inputs[p.key.input_name].warn_each_duplicate:
                logger.warning("Duplicate file found: %s (same content as %s)", p.key, p.slot.owner)

        if duplicates:
            logger.warning("%d duplicate files found", len(duplicates))
        return sorted(duplicates)

    def _upload(self, report: SyncReport, uploads: list[PlannedAsset]) -> None:
        assert self.backend is not None
        progress = tqdm(
            total=len(uploads),
            desc="Syncing",
            unit="asset",
            file=sys.stderr,
            disable=not self.show_progress or not uploads,
        )
        progress_lock = threading.Lock()

        def on_complete(planned: PlannedAsset, result: UploadResult) -> None:
            with progress_lock:
                progress.update(1)

        coordinator = UploadCoordinator(
            self.backend,
            workers=self.config.sync.workers,
            max_attempts=self.config.sync.max_attempts,
            on_complete=on_complete,
        )

        try:
            with coordinator:
                try:
                    for planned in uploads:
                        coordinator.submit(planned)
                    report.results = coordinator.collect(report.planned)
                except KeyboardInterrupt:
                    coordinator.cancel()
                    report.cancelled = True
                    report.results = coordinator.collect(report.planned)
        finally:
            progress.close()

        report.backend_calls = coordinator.calls

        if coordinator.aborted is not None:
            raise coordinator.aborted

        for key, result in report.results.items():
            if not result.ok:
                report.failures[key] = result.cause or "unknown error"

    def _resolve(self, report: SyncReport) -> dict[AssetKey, str]:
        """Identifier per key; failed keys fall back to their last recorded id."""
        resolved = {
            key: result.identifier
            for key, result in report.results.items()
            if result.ok and result.identifier is not None
        }

        if self.persistent:
            for key in report.failures:
                entry = self.manifest.get(key)
                if key not in resolved and entry is not None:
                    resolved[key] = entry.identifier

        return resolved

    def _merge(self, report: SyncReport, discovery: DiscoveryResult) -> Manifest:
        entries = {}
        for planned in report.planned:
            result = report.results.get(planned.key)
            if planned.action is SyncAction.DECLARED or planned.hash is None:
                continue
            if result is not None and result.ok and result.identifier is not None:
                entries[planned.key] = ManifestEntry(planned.hash, result.identifier, ENTRY_FORMAT)

        manifest = self.manifest.merged(entries)
        if not report.cancelled:
            discovered = [asset.key for asset in discovery.assets]
            manifest = manifest.pruned(discovered, self.config.inputs)

        if self.manifest_path is not None:
            save(manifest, self.manifest_path)
        return manifest

