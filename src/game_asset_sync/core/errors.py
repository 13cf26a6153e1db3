"""Error taxonomy for the sync engine.

Configuration and manifest errors are terminal for the whole run and are
raised before any network activity. Processing and upload errors are
terminal for a single asset only, except AuthenticationError which aborts
the run because no further backend call can succeed.
"""

from .types import FailureKind


class AssetSyncError(Exception):
    """Base class for all sync errors."""


class ConfigurationError(AssetSyncError):
    """Invalid configuration, missing credential, or naming collision."""


class ManifestError(AssetSyncError):
    """The manifest file is unreadable or does not match any known schema."""


class AssetProcessingError(AssetSyncError):
    """An asset could not be classified or preprocessed."""


class ClassificationError(AssetProcessingError):
    """A claimed container format could not be parsed."""


class PreprocessError(AssetProcessingError):
    """An image transform failed (e.g. malformed vector document)."""


class SyncCancelled(AssetSyncError):
    """The caller interrupted the run."""


class UploadError(AssetSyncError):
    """A backend call failed.

    Attributes:
        kind: Whether the failure is transient, terminal or fatal
    """

    kind = FailureKind.TERMINAL

    def __init__(self, cause: str):
        super().__init__(cause)
        self.cause = cause


class RetryableUploadError(UploadError):
    """Timeout, rate limit or transient server fault.

    Attributes:
        retry_after: Seconds the service asked us to wait, if it said so
    """

    kind = FailureKind.TRANSIENT

    def __init__(self, cause: str, retry_after: float | None = None):
        super().__init__(cause)
        self.retry_after = retry_after


class TerminalUploadError(UploadError):
    """A failure that retrying cannot fix."""


class InvalidContentError(TerminalUploadError):
    """The service rejected the content itself."""


class ModerationRejectedError(TerminalUploadError):
    """The content was rejected by moderation."""


class AuthenticationError(UploadError):
    """Credentials were rejected; escalated to a run-aborting condition."""

    kind = FailureKind.FATAL
