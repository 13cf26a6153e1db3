"""End-to-end tests for the sync pipeline against an in-memory backend."""

import threading
from pathlib import Path
from typing import Any, Callable

import numpy as np
import pytest
from PIL import Image

from game_asset_sync import lockfile
from game_asset_sync.config import Config
from game_asset_sync.coordinator import CANCELLED_CAUSE, UploadCoordinator
from game_asset_sync.core.errors import AuthenticationError, ConfigurationError, InvalidContentError
from game_asset_sync.core.hashing import content_hash
from game_asset_sync.core.types import AssetKey, SyncAction
from game_asset_sync.credentials import Credentials
from game_asset_sync.lockfile import Manifest, ManifestEntry
from game_asset_sync.pipeline import SyncPipeline, SyncReport
from game_asset_sync.planner import PlannedAsset
from conftest import RecordingBackend, make_config, png_bytes, write_file
from test_containers import binary_container


def key(path: str) -> AssetKey:
    return AssetKey("assets", path)


def sync(project: Path, backend: RecordingBackend, config: Config | None = None, **kwargs: Any) -> SyncReport:
    """Load the project's manifest and run one sync against backend."""
    config = config or make_config(project)
    manifest_path = project / lockfile.FILE_NAME
    manifest = lockfile.load(manifest_path, config.inputs)
    return SyncPipeline(config, backend, manifest, manifest_path=manifest_path, **kwargs).run()


def dry_run(project: Path, config: Config | None = None) -> SyncReport:
    config = config or make_config(project)
    manifest = lockfile.load(project / lockfile.FILE_NAME, config.inputs)
    return SyncPipeline(config, manifest=manifest, dry_run=True).run()


def saved_manifest(project: Path) -> Manifest:
    return lockfile.load(project / lockfile.FILE_NAME)


class TestIdempotence:
    """Test that syncing twice without changes does nothing the second time."""

    def test_second_run_makes_no_calls(self, project: Path) -> None:
        """Test that an unchanged project needs no backend call."""
        write_file(project, "assets/a.mp3", b"sound-a")
        write_file(project, "assets/ui/b.mp3", b"sound-b")

        first_backend = RecordingBackend()
        first = sync(project, first_backend)
        lock_text = (project / lockfile.FILE_NAME).read_text()

        second_backend = RecordingBackend()
        second = sync(project, second_backend)

        assert len(first_backend.calls) == 2
        assert first.ok
        assert second_backend.calls == []
        assert second.backend_calls == 0
        assert second.action_counts[SyncAction.UNCHANGED] == 2
        assert (project / lockfile.FILE_NAME).read_text() == lock_text

    def test_manifest_records_hash_and_identifier(self, project: Path) -> None:
        """Test that successful uploads are persisted."""
        write_file(project, "assets/a.mp3", b"sound-a")

        sync(project, RecordingBackend())

        entry = saved_manifest(project).get(key("a.mp3"))
        assert entry == ManifestEntry(content_hash(b"sound-a"), "rbxassetid://1000")

    def test_bindings_are_written(self, project: Path) -> None:
        """Test that the Luau module maps every key to its identifier."""
        write_file(project, "assets/a.mp3", b"sound-a")

        report = sync(project, RecordingBackend())

        [binding] = report.bindings
        assert binding == project / "src" / "assets.luau"
        assert '["a.mp3"] = "rbxassetid://1000"' in binding.read_text()


class TestDeduplication:
    """Test that identical content is uploaded once."""

    def test_identical_files_share_one_upload(self, project: Path, backend: RecordingBackend) -> None:
        """Test that N identical files cause one backend call."""
        for i in range(5):
            write_file(project, f"assets/copy{i}.mp3", b"same-sound")

        report = sync(project, backend)

        assert len(backend.calls) == 1
        manifest = saved_manifest(project)
        identifiers = {manifest.get(key(f"copy{i}.mp3")).identifier for i in range(5)}
        assert identifiers == {"rbxassetid://1000"}
        assert len(report.duplicates) == 4

    def test_renamed_file_reuses_recorded_identifier(self, project: Path) -> None:
        """Test that moving a file needs no upload and prunes the old key."""
        write_file(project, "assets/old.mp3", b"sound")
        sync(project, RecordingBackend())
        (project / "assets/old.mp3").rename(project / "assets/new.mp3")

        backend = RecordingBackend()
        report = sync(project, backend)

        assert backend.calls == []
        assert report.duplicates == []
        manifest = saved_manifest(project)
        assert list(manifest) == [key("new.mp3")]
        assert manifest.get(key("new.mp3")).identifier == "rbxassetid://1000"


class TestChangeDetection:
    """Test that only changed content is uploaded."""

    def test_only_modified_file_is_uploaded(self, project: Path) -> None:
        """Test that modifying one file re-uploads just that file."""
        write_file(project, "assets/a.mp3", b"sound-a")
        write_file(project, "assets/b.mp3", b"sound-b")
        sync(project, RecordingBackend())
        write_file(project, "assets/b.mp3", b"sound-b-v2")

        backend = RecordingBackend()
        report = sync(project, backend)

        assert [r.key for r in backend.calls] == [key("b.mp3")]
        assert saved_manifest(project).get(key("b.mp3")).hash == content_hash(b"sound-b-v2")
        assert report.action_counts[SyncAction.UNCHANGED] == 1

    def test_deleted_file_is_pruned(self, project: Path) -> None:
        """Test that keys no longer discovered leave the manifest."""
        write_file(project, "assets/a.mp3", b"sound-a")
        write_file(project, "assets/b.mp3", b"sound-b")
        sync(project, RecordingBackend())
        (project / "assets/b.mp3").unlink()

        sync(project, RecordingBackend())

        assert list(saved_manifest(project)) == [key("a.mp3")]

    def test_bleed_toggle_on_opaque_image_needs_no_upload(self, project: Path) -> None:
        """Test that a transform producing identical bytes does not re-upload."""
        opaque = np.full((2, 2, 4), 255, dtype=np.uint8)
        write_file(project, "assets/opaque.png", png_bytes(opaque))
        sync(project, RecordingBackend())

        backend = RecordingBackend()
        config = make_config(project, inputs={"assets": {"path": "assets/**/*", "output_path": "src", "bleed": False}})
        sync(project, backend, config=config)

        assert backend.calls == []

    def test_bleed_toggle_on_transparent_image_uploads(self, project: Path) -> None:
        """Test that a transform changing the bytes re-uploads."""
        rgba = np.zeros((1, 2, 4), dtype=np.uint8)
        rgba[0, 0] = (255, 0, 0, 255)
        write_file(project, "assets/sprite.png", png_bytes(rgba))
        sync(project, RecordingBackend())

        backend = RecordingBackend()
        config = make_config(project, inputs={"assets": {"path": "assets/**/*", "output_path": "src", "bleed": False}})
        sync(project, backend, config=config)

        assert [r.key for r in backend.calls] == [key("sprite.png")]


class TestDryRun:
    """Test drift detection without uploads."""

    def test_reports_stale_entries(self, project: Path) -> None:
        """Test that only the stale key is reported and nothing is written."""
        write_file(project, "assets/a.mp3", b"sound-a")
        write_file(project, "assets/b.mp3", b"sound-b")
        manifest = Manifest({
            key("a.mp3"): ManifestEntry(content_hash(b"sound-a"), "rbxassetid://1"),
            key("b.mp3"): ManifestEntry("0" * 64, "rbxassetid://2"),
        })
        lockfile.save(manifest, project / lockfile.FILE_NAME)
        lock_text = (project / lockfile.FILE_NAME).read_text()

        report = dry_run(project)

        assert report.changed == [key("b.mp3")]
        assert not report.ok
        assert report.results == {}
        assert (project / lockfile.FILE_NAME).read_text() == lock_text
        assert not (project / "src").exists()

    def test_up_to_date_project(self, project: Path) -> None:
        """Test that a synced project has no drift."""
        write_file(project, "assets/a.mp3", b"sound-a")
        sync(project, RecordingBackend())

        report = dry_run(project)

        assert report.changed == []
        assert report.ok

    def test_requires_no_credentials(self, project: Path) -> None:
        """Test that a dry run needs no backend and no credentials."""
        write_file(project, "assets/walk.rbxm", binary_container("KeyframeSequence"))

        report = dry_run(project)

        assert report.changed == [key("walk.rbxm")]


class TestFailures:
    """Test per-asset failures and run-aborting errors."""

    def test_partial_failure_keeps_successes(self, project: Path) -> None:
        """Test that one rejected asset does not stop the others."""
        write_file(project, "assets/a.mp3", b"sound-a")
        write_file(project, "assets/b.mp3", b"sound-b")
        backend = RecordingBackend(errors={"b.mp3": InvalidContentError("rejected")})

        report = sync(project, backend)

        assert not report.ok
        assert report.failures == {key("b.mp3"): "rejected"}
        manifest = saved_manifest(project)
        assert key("a.mp3") in manifest
        assert key("b.mp3") not in manifest

    def test_failed_asset_keeps_previous_entry_and_binding(self, project: Path) -> None:
        """Test that a failed re-upload leaves the last good identifier in place."""
        write_file(project, "assets/a.mp3", b"sound-a")
        sync(project, RecordingBackend())
        write_file(project, "assets/a.mp3", b"sound-a-v2")

        report = sync(project, RecordingBackend(errors={"a.mp3": InvalidContentError("rejected")}))

        assert saved_manifest(project).get(key("a.mp3")).identifier == "rbxassetid://1000"
        assert '"rbxassetid://1000"' in report.bindings[0].read_text()

    def test_processing_failure_is_per_asset(self, project: Path, backend: RecordingBackend) -> None:
        """Test that an undecodable image fails alone."""
        write_file(project, "assets/broken.png", b"not a png")
        write_file(project, "assets/a.mp3", b"sound-a")

        report = sync(project, backend)

        assert list(report.failures) == [key("broken.png")]
        assert [r.key for r in backend.calls] == [key("a.mp3")]

    def test_oversized_image_fails_alone(
        self, project: Path, backend: RecordingBackend, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that an image over the pixel limit does not abort the run."""
        rgba = np.zeros((8, 8, 4), dtype=np.uint8)
        rgba[0, 0] = (255, 0, 0, 255)
        write_file(project, "assets/huge.png", png_bytes(rgba))
        write_file(project, "assets/a.mp3", b"sound-a")
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)

        report = sync(project, backend)

        assert list(report.failures) == [key("huge.png")]
        assert [r.key for r in backend.calls] == [key("a.mp3")]

    def test_authentication_failure_leaves_manifest_untouched(self, project: Path) -> None:
        """Test that rejected credentials abort without writing anything."""
        write_file(project, "assets/a.mp3", b"sound-a")
        backend = RecordingBackend(errors={"a.mp3": AuthenticationError("401 Unauthorized")})

        with pytest.raises(AuthenticationError):
            sync(project, backend)

        assert not (project / lockfile.FILE_NAME).exists()
        assert not (project / "src").exists()

    def test_missing_cookie_fails_before_any_upload(self, project: Path, backend: RecordingBackend) -> None:
        """Test that a credential needed by an upload is checked up front."""
        write_file(project, "assets/a.mp3", b"sound-a")
        write_file(project, "assets/walk.rbxm", binary_container("KeyframeSequence"))

        with pytest.raises(ConfigurationError, match="cookie"):
            sync(project, backend, credentials=Credentials(api_key="key"))

        assert backend.calls == []

    def test_unchanged_animation_needs_no_cookie(self, project: Path) -> None:
        """Test that credentials are only required for kinds being uploaded."""
        write_file(project, "assets/walk.rbxm", binary_container("KeyframeSequence"))
        sync(project, RecordingBackend())

        backend = RecordingBackend()
        sync(project, backend, credentials=Credentials(api_key="key"))

        assert backend.calls == []

    def test_unsupported_file_fails_before_any_upload(self, project: Path, backend: RecordingBackend) -> None:
        """Test that unsupported files are a configuration error."""
        write_file(project, "assets/a.mp3", b"sound-a")
        write_file(project, "assets/readme.txt", b"hello")

        with pytest.raises(ConfigurationError, match="assets/readme.txt"):
            sync(project, backend)

        assert backend.calls == []

    def test_binding_collision_fails_before_any_upload(self, project: Path, backend: RecordingBackend) -> None:
        """Test that colliding binding names are rejected up front."""
        write_file(project, "assets/logo.png", png_bytes(np.full((1, 1, 4), 255, dtype=np.uint8)))
        write_file(project, "assets/logo.jpg", b"jpeg")
        config = make_config(project, codegen={"strip_extensions": True})

        with pytest.raises(ConfigurationError, match="Binding collision"):
            sync(project, backend, config=config)

        assert backend.calls == []


class TestDeclaredAssets:
    """Test pre-declared web assets."""

    def test_declared_asset_is_bound_but_not_recorded(self, project: Path, backend: RecordingBackend) -> None:
        """Test that web assets appear in bindings only."""
        write_file(project, "assets/a.mp3", b"sound-a")
        config = make_config(project, inputs={
            "assets": {"path": "assets/**/*", "output_path": "src", "web": {"remote/logo.png": {"id": 42}}},
        })

        report = sync(project, backend, config=config)

        assert [r.key for r in backend.calls] == [key("a.mp3")]
        assert key("remote/logo.png") not in saved_manifest(project)
        assert '["remote/logo.png"] = "rbxassetid://42"' in report.bindings[0].read_text()


class TestNonPersistentBackend:
    """Test backends whose identifiers do not survive the run."""

    def test_uploads_everything_and_skips_manifest(self, project: Path) -> None:
        """Test that change detection is bypassed and the manifest is not written."""
        write_file(project, "assets/a.mp3", b"sound-a")
        write_file(project, "assets/b.mp3", b"sound-a")
        config = make_config(project)
        manifest = Manifest({key("a.mp3"): ManifestEntry(content_hash(b"sound-a"), "rbxassetid://1")})
        backend = RecordingBackend(persistent=False)

        report = SyncPipeline(config, backend, manifest).run()

        assert len(backend.calls) == 1
        assert report.manifest is None
        assert not (project / lockfile.FILE_NAME).exists()
        assert report.results[key("a.mp3")].identifier == "rbxassetid://1000"

    def test_backend_required_outside_dry_run(self, project: Path) -> None:
        """Test that a real run needs a backend."""
        with pytest.raises(ValueError):
            SyncPipeline(make_config(project))


def run_in_thread(target: Callable[[], SyncReport], timeout: float = 10.0) -> SyncReport:
    """Run target on a daemon thread and fail instead of hanging."""
    outcome: dict[str, SyncReport] = {}
    thread = threading.Thread(target=lambda: outcome.update(report=target()), daemon=True)
    thread.start()
    thread.join(timeout)
    assert not thread.is_alive(), "sync did not return after the interrupt"
    return outcome["report"]


class TestCancellation:
    """Test interrupting a run while uploads are in progress."""

    @pytest.fixture
    def stale_project(self, project: Path) -> Path:
        """Project with three files and a manifest entry for a deleted one."""
        write_file(project, "assets/a.mp3", b"sound-a")
        write_file(project, "assets/b.mp3", b"sound-b")
        write_file(project, "assets/c.mp3", b"sound-b")
        lockfile.save(
            Manifest({key("old.mp3"): ManifestEntry(content_hash(b"gone"), "rbxassetid://1")}),
            project / lockfile.FILE_NAME,
        )
        return project

    def test_interrupt_while_dispatching(
        self, stale_project: Path, backend: RecordingBackend, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that undispatched uploads resolve as cancelled and finished ones are saved."""
        original_submit = UploadCoordinator.submit
        submitted: list[PlannedAsset] = []

        def interrupted_submit(self: UploadCoordinator, planned: PlannedAsset) -> None:
            if planned.action is SyncAction.UPLOAD and submitted:
                submitted[0].result(timeout=5)
                raise KeyboardInterrupt
            original_submit(self, planned)
            if planned.action is SyncAction.UPLOAD:
                submitted.append(planned)

        monkeypatch.setattr(UploadCoordinator, "submit", interrupted_submit)

        report = run_in_thread(lambda: sync(stale_project, backend))

        assert report.cancelled
        assert not report.ok
        assert [r.key for r in backend.calls] == [key("a.mp3")]
        for path in ("b.mp3", "c.mp3"):
            assert report.results[key(path)].cause.startswith(CANCELLED_CAUSE)

        manifest = saved_manifest(stale_project)
        assert key("a.mp3") in manifest
        assert key("b.mp3") not in manifest
        assert key("c.mp3") not in manifest
        assert key("old.mp3") in manifest
        assert report.bindings == []
        assert not (stale_project / "src/assets.luau").exists()

    def test_interrupt_while_collecting(
        self, stale_project: Path, backend: RecordingBackend, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that finished uploads are merged but the manifest is not pruned."""
        original_collect = UploadCoordinator.collect
        interrupted: list[bool] = []

        def interrupted_collect(self: UploadCoordinator, planned_assets: list[PlannedAsset]) -> dict:
            if not interrupted:
                interrupted.append(True)
                original_collect(self, planned_assets)
                raise KeyboardInterrupt
            return original_collect(self, planned_assets)

        monkeypatch.setattr(UploadCoordinator, "collect", interrupted_collect)

        report = run_in_thread(lambda: sync(stale_project, backend))

        assert report.cancelled
        assert report.failures == {}
        manifest = saved_manifest(stale_project)
        assert {k.path for k, _ in manifest.items()} == {"a.mp3", "b.mp3", "c.mp3", "old.mp3"}
        assert report.bindings == []
