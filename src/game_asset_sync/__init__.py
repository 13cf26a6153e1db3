"""Game Asset Sync.

This package discovers local game assets, detects which ones changed
since the last run, uploads them (once per distinct content) to a
pluggable backend, records the resulting identifiers in a lockfile and
generates source-code bindings mapping asset names to identifiers.
"""

# Core library interface
from .pipeline import SyncPipeline, SyncReport
from .registry import BackendRegistry
from .backends.base import Backend, BackendParams, UploadRequest

# Engine components
from .classifier import classify
from .config import Config, load_config
from .credentials import Credentials, load_credentials
from .imaging import alpha_bleed, preprocess, rasterize_svg
from .lockfile import Manifest, ManifestEntry
from .planner import DedupIndex, PlannedAsset, Planner
from .coordinator import UploadCoordinator

# Core utilities
from .core import AssetKey, AssetKind, SyncAction, UploadResult, content_hash

from .cli import main

__version__ = "0.1.0"

# Auto-discover and register all backends
BackendRegistry.discover_backends()

__all__ = [
    # Primary library interface
    "SyncPipeline",
    "SyncReport",
    "BackendRegistry",
    "Backend",
    "BackendParams",
    "UploadRequest",
    # Engine components
    "classify",
    "Config",
    "load_config",
    "Credentials",
    "load_credentials",
    "alpha_bleed",
    "preprocess",
    "rasterize_svg",
    "Manifest",
    "ManifestEntry",
    "DedupIndex",
    "PlannedAsset",
    "Planner",
    "UploadCoordinator",
    # Core utilities
    "AssetKey",
    "AssetKind",
    "SyncAction",
    "UploadResult",
    "content_hash",
    "main",
]
