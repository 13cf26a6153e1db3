"""Debug backend.

Writes processed assets under <project>/.asset-sync-debug and hands out
placeholder identifiers.
"""

from ...registry import BackendRegistry
from ..base import BackendParams
from .backend import DEBUG_DIR, DebugBackend


def _create_debug_backend(params: BackendParams) -> DebugBackend:
    backend = DebugBackend(params.project_dir / DEBUG_DIR)
    backend.prepare()
    return backend


# Auto-register at module import
BackendRegistry.register_factory("debug", _create_debug_backend)

__all__ = ["DEBUG_DIR", "DebugBackend"]
