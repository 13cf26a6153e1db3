"""Core utilities for the sync engine.

This package contains type definitions, the error taxonomy, content
hashing and schema validation that are used across all modules.
"""

from .errors import (
    AssetProcessingError,
    AssetSyncError,
    AuthenticationError,
    ClassificationError,
    ConfigurationError,
    InvalidContentError,
    ManifestError,
    ModerationRejectedError,
    PreprocessError,
    RetryableUploadError,
    SyncCancelled,
    TerminalUploadError,
    UploadError,
)
from .hashing import content_hash
from .types import AssetKey, AssetKind, DiscoveredAsset, FailureKind, SyncAction, UploadResult
from .validator import validate_document, validate_with_error_details

__all__ = [
    "AssetKey",
    "AssetKind",
    "DiscoveredAsset",
    "FailureKind",
    "SyncAction",
    "UploadResult",
    "content_hash",
    "validate_document",
    "validate_with_error_details",
    "AssetSyncError",
    "AssetProcessingError",
    "AuthenticationError",
    "ClassificationError",
    "ConfigurationError",
    "InvalidContentError",
    "ManifestError",
    "ModerationRejectedError",
    "PreprocessError",
    "RetryableUploadError",
    "SyncCancelled",
    "TerminalUploadError",
    "UploadError",
]
