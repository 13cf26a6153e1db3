"""Debug backend: writes processed bytes to a local directory.

No network access. Useful to inspect what preprocessing produced.
"""

import logging
import shutil
from pathlib import Path

from ...core.errors import TerminalUploadError
from ...core.types import UploadResult
from ..base import UploadRequest

logger = logging.getLogger(__name__)

DEBUG_DIR = ".asset-sync-debug"


class DebugBackend:
    name = "debug"
    persistent = False

    def __init__(self, sync_path: Path):
        self.sync_path = sync_path

    def prepare(self) -> None:
        """Clear the output directory."""
        logger.info("Assets will be synced to: %s", self.sync_path)
        if self.sync_path.exists():
            shutil.rmtree(self.sync_path)
        self.sync_path.mkdir(parents=True)

    def _write(self, request: UploadRequest) -> UploadResult:
        rel_path = f"{request.key.input_name}/{request.output_path.as_posix()}"
        target = self.sync_path / rel_path

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(request.data)
        except OSError as e:
            raise TerminalUploadError(f"Failed to write asset to {target}: {e}") from e

        return UploadResult.success(f"debug://{rel_path}")

    upload_image = _write
    upload_audio = _write
    upload_video = _write
    upload_model = _write
    upload_animation = _write
