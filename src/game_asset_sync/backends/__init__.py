"""Sync backends.

Backend packages (cloud, studio, debug) register themselves with the
BackendRegistry when imported. BackendRegistry.discover_backends() imports
all of them.
"""

from .base import Backend, BackendParams, UploadRequest, dispatch, operation_for

__all__ = ["Backend", "BackendParams", "UploadRequest", "dispatch", "operation_for"]
