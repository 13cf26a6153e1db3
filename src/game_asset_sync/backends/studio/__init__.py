"""Studio backend.

Syncs assets into the local editor's content directory for offline
iteration. Identifiers are only valid on this machine.
"""

from ...registry import BackendRegistry
from ..base import BackendParams
from .backend import StudioBackend, locate_content_dir, project_identifier


def _create_studio_backend(params: BackendParams) -> StudioBackend:
    backend = StudioBackend(
        locate_content_dir(),
        project_identifier(params.project_dir),
        manifest=params.manifest,
    )
    backend.prepare()
    return backend


# Auto-register at module import
BackendRegistry.register_factory("studio", _create_studio_backend)

__all__ = ["StudioBackend", "locate_content_dir", "project_identifier"]
