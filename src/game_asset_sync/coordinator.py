"""Upload coordinator.

Runs Upload actions against a backend on a fixed-size worker pool. Each
call is retried on transient failures with exponential backoff (or the
delay the service asked for) up to a fixed attempt ceiling. Terminal
failures are not retried. An authentication failure aborts the run:
nothing further is dispatched and queued uploads resolve as cancelled.

Reuse actions never occupy a worker. They wait on the Future of the
upload slot they reference and copy its result.
"""

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Callable

from .backends.base import Backend, UploadRequest, dispatch
from .core.errors import AuthenticationError, RetryableUploadError, UploadError
from .core.types import AssetKey, FailureKind, SyncAction, UploadResult
from .planner import PlannedAsset

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 60.0

CANCELLED_CAUSE = "cancelled before upload"


class UploadCoordinator:
    """Bounded-concurrency executor for Upload actions.

    Use as a context manager; submit() planned assets as they come out of
    the planner, then collect() the results of every planned asset.

    Args:
        backend: Target of the uploads
        workers: Maximum concurrent backend calls
        max_attempts: Attempts per upload before a transient failure
            becomes terminal
        base_delay: Delay before the first retry, doubled on each retry
        max_delay: Upper bound of the computed backoff delay
        sleep: Function used to wait between retries. Defaults to waiting
            on the cancellation event so an interrupt cuts the wait short.
        on_complete: Called with each finished upload and its result
    """

    def __init__(
        self,
        backend: Backend,
        workers: int = 8,
        max_attempts: int = 5,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], object] | None = None,
        on_complete: Callable[[PlannedAsset, UploadResult], None] | None = None,
    ):
        self.backend = backend
        self.workers = workers
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.on_complete = on_complete

        self._cancel = threading.Event()
        self._sleep = sleep if sleep is not None else self._cancel.wait
        self._lock = threading.Lock()
        self._pending: dict["Future[UploadResult]", PlannedAsset] = {}
        self._executor: ThreadPoolExecutor | None = None
        self.aborted: AuthenticationError | None = None
        self.calls = 0

    def __enter__(self) -> "UploadCoordinator":
        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="upload")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.cancel()
        self.shutdown()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def submit(self, planned: PlannedAsset) -> None:
        """Queue an asset. Only Upload actions are dispatched to a worker."""
        if planned.action is not SyncAction.UPLOAD:
            return
        if self._executor is None:
            raise RuntimeError("UploadCoordinator must be used as a context manager")

        with self._lock:
            if self._cancel.is_set():
                self._finish(planned, self._cancelled_result())
                return
            future = self._executor.submit(self._run, planned)
            self._pending[future] = planned

    def cancel(self) -> None:
        """Stop dispatching. In-flight uploads are allowed to finish."""
        with self._lock:
            if not self._cancel.is_set():
                logger.warning("Cancelling: no further uploads will be started")
            self._cancel.set()
            for future, planned in self._pending.items():
                if future.cancel():
                    self._finish(planned, self._cancelled_result())

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=self._cancel.is_set())
            self._executor = None

    def collect(self, planned_assets: Iterable[PlannedAsset]) -> dict[AssetKey, UploadResult]:
        """Wait for every upload and resolve every planned asset.

        Upload actions that were never submitted (the caller was interrupted
        while dispatching) resolve as cancelled, along with the Reuse
        actions waiting on them.

        Returns:
            Mapping of logical key to its resolved UploadResult
        """
        with self._lock:
            futures = list(self._pending)
        wait_futures(futures)

        planned_assets = list(planned_assets)
        for planned in planned_assets:
            if planned.action is SyncAction.UPLOAD and planned.slot is not None and not planned.slot.done:
                self._finish(planned, self._cancelled_result())

        return {planned.key: planned.result() for planned in planned_assets}

    def _cancelled_result(self) -> UploadResult:
        cause = CANCELLED_CAUSE
        if self.aborted is not None:
            cause = f"{CANCELLED_CAUSE}: {self.aborted.cause}"
        return UploadResult.failed(FailureKind.TERMINAL, cause, attempts=0)

    def _finish(self, planned: PlannedAsset, result: UploadResult) -> None:
        assert planned.slot is not None
        planned.slot.resolve(result)
        planned.data = None

        if result.ok:
            logger.info("Uploaded %s -> %s", planned.key, result.identifier)
        elif result.cause and not result.cause.startswith(CANCELLED_CAUSE):
            logger.error("Failed to upload %s: %s", planned.key, result.cause)

        if self.on_complete is not None:
            self.on_complete(planned, result)

    def _run(self, planned: PlannedAsset) -> UploadResult:
        try:
            if self._cancel.is_set():
                result = self._cancelled_result()
            else:
                result = self._upload_with_retry(planned)
        except Exception as e:
            logger.debug("Unexpected error uploading %s", planned.key, exc_info=True)
            result = UploadResult.failed(FailureKind.TERMINAL, f"{type(e).__name__}: {e}")

        self._finish(planned, result)
        return result

    def _backoff(self, attempt: int, error: RetryableUploadError) -> float:
        if error.retry_after is not None:
            return error.retry_after
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    def _upload_with_retry(self, planned: PlannedAsset) -> UploadResult:
        assert planned.kind is not None and planned.hash is not None
        request = UploadRequest(
            key=planned.key,
            kind=planned.kind,
            data=planned.data or b"",
            hash=planned.hash,
        )

        with self._lock:
            self.calls += 1

        attempt = 0
        while True:
            attempt += 1
            try:
                result = dispatch(self.backend, request)
                if not result.ok:
                    return UploadResult.failed(
                        result.failure or FailureKind.TERMINAL,
                        result.cause or "backend returned no identifier",
                        attempts=attempt,
                    )
                assert result.identifier is not None
                return UploadResult.success(result.identifier, result.price, attempts=attempt)

            except RetryableUploadError as e:
                if attempt >= self.max_attempts:
                    return UploadResult.failed(
                        FailureKind.TERMINAL,
                        f"{e.cause} (gave up after {attempt} attempts)",
                        attempts=attempt,
                    )

                delay = self._backoff(attempt, e)
                logger.warning(
                    "%s: %s, retrying in %.0fs (attempt %d/%d)",
                    planned.key, e.cause, delay, attempt, self.max_attempts,
                )
                self._sleep(delay)
                if self._cancel.is_set():
                    return self._cancelled_result()

            except AuthenticationError as e:
                with self._lock:
                    if self.aborted is None:
                        self.aborted = e
                        logger.error("Authentication failed, aborting: %s", e.cause)
                self.cancel()
                return UploadResult.failed(FailureKind.FATAL, e.cause, attempts=attempt)

            except UploadError as e:
                return UploadResult.failed(e.kind, e.cause, attempts=attempt)
