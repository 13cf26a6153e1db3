"""Tests for the upload coordinator."""

import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from game_asset_sync.coordinator import CANCELLED_CAUSE, UploadCoordinator
from game_asset_sync.core.errors import (
    AuthenticationError,
    InvalidContentError,
    RetryableUploadError,
)
from game_asset_sync.core.types import AssetKey, AssetKind, DiscoveredAsset, FailureKind, SyncAction
from game_asset_sync.lockfile import Manifest
from game_asset_sync.planner import PlannedAsset, Planner
from conftest import RecordingBackend


def plan_all(*specs: tuple[str, str]) -> list[PlannedAsset]:
    """Plan (path, hash) pairs against an empty manifest."""
    planner = Planner(Manifest())
    return [
        planner.plan(
            DiscoveredAsset(
                key=AssetKey("assets", path),
                source_path=Path(path),
                extension="png",
                data=hash.encode(),
                kind=AssetKind.IMAGE,
                hash=hash,
            )
        )
        for path, hash in specs
    ]


def run(coordinator: UploadCoordinator, planned: list[PlannedAsset]) -> dict:
    with coordinator:
        for p in planned:
            coordinator.submit(p)
        return coordinator.collect(planned)


class TestUploads:
    """Test dispatching Upload actions."""

    def test_uploads_each_hash_once(self, backend: RecordingBackend) -> None:
        """Test that Reuse actions never reach the backend."""
        planned = plan_all(("a.png", "1" * 64), ("b.png", "1" * 64), ("c.png", "2" * 64))
        coordinator = UploadCoordinator(backend, workers=4)

        results = run(coordinator, planned)

        assert sorted(r.key.path for r in backend.calls) == ["a.png", "c.png"]
        assert coordinator.calls == 2
        assert results[AssetKey("assets", "a.png")] == results[AssetKey("assets", "b.png")]
        assert all(r.ok for r in results.values())

    def test_upload_request_carries_processed_bytes(self, backend: RecordingBackend) -> None:
        """Test that the request holds the planned data, which is dropped afterwards."""
        [planned] = plan_all(("a.png", "1" * 64))

        run(UploadCoordinator(backend), [planned])

        [request] = backend.calls
        assert request.data == ("1" * 64).encode()
        assert request.kind is AssetKind.IMAGE
        assert planned.data is None

    def test_non_upload_actions_are_ignored(self, backend: RecordingBackend) -> None:
        """Test that declared assets are resolved without the backend."""
        declared = PlannedAsset(AssetKey("assets", "web.png"), SyncAction.DECLARED, identifier="rbxassetid://3")

        results = run(UploadCoordinator(backend), [declared])

        assert backend.calls == []
        assert results[declared.key].identifier == "rbxassetid://3"

    def test_on_complete_is_called_per_upload(self, backend: RecordingBackend) -> None:
        """Test the completion callback used for progress reporting."""
        on_complete = Mock()
        planned = plan_all(("a.png", "1" * 64), ("b.png", "2" * 64))

        run(UploadCoordinator(backend, on_complete=on_complete), planned)

        assert on_complete.call_count == 2

    def test_submit_outside_context_raises(self, backend: RecordingBackend) -> None:
        """Test that the worker pool only exists inside the context manager."""
        [planned] = plan_all(("a.png", "1" * 64))

        with pytest.raises(RuntimeError):
            UploadCoordinator(backend).submit(planned)


class TestRetries:
    """Test retry and failure handling."""

    def test_transient_failures_are_retried_with_backoff(self) -> None:
        """Test exponential backoff between attempts."""
        backend = RecordingBackend(errors={"a.png": [RetryableUploadError("timeout"), RetryableUploadError("503")]})
        sleeps: list[float] = []
        [planned] = plan_all(("a.png", "1" * 64))

        results = run(UploadCoordinator(backend, sleep=sleeps.append, base_delay=1.0), [planned])

        result = results[planned.key]
        assert result.ok
        assert result.attempts == 3
        assert sleeps == [1.0, 2.0]

    def test_backoff_is_capped(self) -> None:
        """Test that the computed delay never exceeds max_delay."""
        backend = RecordingBackend(errors={"a.png": [RetryableUploadError("503")] * 3})
        sleeps: list[float] = []
        [planned] = plan_all(("a.png", "1" * 64))

        run(UploadCoordinator(backend, sleep=sleeps.append, base_delay=4.0, max_delay=10.0), [planned])

        assert sleeps == [4.0, 8.0, 10.0]

    def test_retry_after_is_honoured(self) -> None:
        """Test that a rate limit delay from the service wins over backoff."""
        backend = RecordingBackend(errors={"a.png": [RetryableUploadError("429", retry_after=7.0)]})
        sleeps: list[float] = []
        [planned] = plan_all(("a.png", "1" * 64))

        run(UploadCoordinator(backend, sleep=sleeps.append), [planned])

        assert sleeps == [7.0]

    def test_gives_up_after_max_attempts(self) -> None:
        """Test that persistent transient failures become terminal."""
        backend = RecordingBackend(errors={"a.png": RetryableUploadError("503")})
        sleeps: list[float] = []
        [planned] = plan_all(("a.png", "1" * 64))

        results = run(UploadCoordinator(backend, max_attempts=3, sleep=sleeps.append), [planned])

        result = results[planned.key]
        assert result.failure is FailureKind.TERMINAL
        assert result.cause == "503 (gave up after 3 attempts)"
        assert len(backend.calls) == 3
        assert len(sleeps) == 2

    def test_terminal_failure_is_not_retried(self) -> None:
        """Test that a content rejection fails immediately."""
        backend = RecordingBackend(errors={"a.png": InvalidContentError("bad image")})
        [planned] = plan_all(("a.png", "1" * 64))

        result = run(UploadCoordinator(backend, sleep=Mock()), [planned])[planned.key]

        assert result.failure is FailureKind.TERMINAL
        assert result.cause == "bad image"
        assert len(backend.calls) == 1

    def test_unexpected_exception_is_terminal(self) -> None:
        """Test that a bug in a backend fails the asset, not the run."""
        backend = RecordingBackend(errors={"a.png": KeyError("boom")})
        [planned] = plan_all(("a.png", "1" * 64))

        result = run(UploadCoordinator(backend), [planned])[planned.key]

        assert result.failure is FailureKind.TERMINAL
        assert "KeyError" in result.cause

    def test_reuse_propagates_failure(self) -> None:
        """Test that assets sharing a failed upload fail with the same cause."""
        backend = RecordingBackend(errors={"a.png": InvalidContentError("rejected")})
        planned = plan_all(("a.png", "1" * 64), ("b.png", "1" * 64))

        results = run(UploadCoordinator(backend), planned)

        assert results[AssetKey("assets", "b.png")].cause == "rejected"
        assert not results[AssetKey("assets", "b.png")].ok


class TestAbort:
    """Test run-aborting conditions."""

    def test_authentication_failure_aborts_remaining_uploads(self) -> None:
        """Test that no upload starts after credentials are rejected."""
        backend = RecordingBackend(errors={"a.png": AuthenticationError("401 Unauthorized")})
        planned = plan_all(("a.png", "1" * 64), ("b.png", "2" * 64), ("c.png", "3" * 64))
        coordinator = UploadCoordinator(backend, workers=1)

        results = run(coordinator, planned)

        assert [r.key.path for r in backend.calls] == ["a.png"]
        assert isinstance(coordinator.aborted, AuthenticationError)
        assert results[AssetKey("assets", "a.png")].failure is FailureKind.FATAL
        for path in ("b.png", "c.png"):
            assert results[AssetKey("assets", path)].cause.startswith(CANCELLED_CAUSE)

    def test_cancel_interrupts_retry_wait(self) -> None:
        """Test that cancelling cuts a backoff wait short."""
        backend = RecordingBackend(errors={"a.png": RetryableUploadError("503")})
        [planned] = plan_all(("a.png", "1" * 64))
        coordinator = UploadCoordinator(backend, base_delay=30.0)

        with coordinator:
            coordinator.submit(planned)
            timer = threading.Timer(0.1, coordinator.cancel)
            timer.start()
            result = planned.result(timeout=10)
            timer.join()

        assert coordinator.cancelled
        assert result.cause.startswith(CANCELLED_CAUSE)
        assert result.failure is FailureKind.TERMINAL

    def test_submit_after_cancel_resolves_as_cancelled(self, backend: RecordingBackend) -> None:
        """Test that nothing is dispatched once the run is cancelled."""
        [planned] = plan_all(("a.png", "1" * 64))

        with UploadCoordinator(backend) as coordinator:
            coordinator.cancel()
            coordinator.submit(planned)

        assert backend.calls == []
        assert planned.result(timeout=1).cause == CANCELLED_CAUSE

    def test_collect_resolves_uploads_never_submitted(self, backend: RecordingBackend) -> None:
        """Test that uploads left behind by an interrupted dispatch loop do not block collect."""
        planned = plan_all(("a.png", "1" * 64), ("b.png", "2" * 64), ("c.png", "2" * 64))

        with UploadCoordinator(backend) as coordinator:
            coordinator.submit(planned[0])
            planned[0].result(timeout=5)
            coordinator.cancel()
            results = coordinator.collect(planned)

        assert [r.key.path for r in backend.calls] == ["a.png"]
        assert results[AssetKey("assets", "a.png")].ok
        for path in ("b.png", "c.png"):
            assert results[AssetKey("assets", path)].cause == CANCELLED_CAUSE
