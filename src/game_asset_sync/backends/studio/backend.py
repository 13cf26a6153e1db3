"""Studio backend: copies assets into the local editor's content directory.

Files land in <content>/.asset-sync-<project>/<input>/<path> and are
addressed as rbxasset://.asset-sync-<project>/<input>/<path>. The
directory is recreated at the start of every run.

Animations cannot be served from local content. An animation whose
manifest entry still matches its hash reuses the recorded cloud id; any
other animation fails for that asset.
"""

import logging
import os
import shutil
import sys
from pathlib import Path

from ...core.errors import ConfigurationError, TerminalUploadError
from ...core.types import UploadResult
from ...discovery import sanitize_filename
from ...lockfile import Manifest
from ..base import UploadRequest

logger = logging.getLogger(__name__)

STUDIO_CONTENT_ENV = "ASSET_SYNC_STUDIO_CONTENT"

MAC_CONTENT_DIR = Path("/Applications/RobloxStudio.app/Contents/Resources/content")
WINDOWS_STUDIO_EXE = "RobloxStudioBeta.exe"


def locate_content_dir() -> Path:
    """Find the content directory of the installed editor.

    Raises:
        ConfigurationError: If no installation can be found
    """
    override = os.environ.get(STUDIO_CONTENT_ENV)
    if override:
        return Path(override)

    if sys.platform == "darwin" and MAC_CONTENT_DIR.is_dir():
        return MAC_CONTENT_DIR

    if sys.platform == "win32" and os.environ.get("LOCALAPPDATA"):
        versions = Path(os.environ["LOCALAPPDATA"]) / "Roblox" / "Versions"
        installs = [p for p in versions.glob("*") if (p / WINDOWS_STUDIO_EXE).exists()]
        if installs:
            latest = max(installs, key=lambda p: p.stat().st_mtime)
            return latest / "content"

    raise ConfigurationError(
        f"Could not find the Roblox Studio content directory. Set {STUDIO_CONTENT_ENV}."
    )


def project_identifier(project_dir: Path) -> str:
    """Folder name for a project: lowercased, whitespace joined with '-'."""
    name = "-".join(project_dir.resolve().name.lower().split())
    return f".asset-sync-{sanitize_filename(name)}"


class StudioBackend:
    """Backend that writes into the editor's content directory.

    Args:
        content_dir: Editor content directory
        identifier: Project folder name inside content_dir
        manifest: Manifest loaded at startup, consulted for animations
    """

    name = "studio"
    persistent = False

    def __init__(self, content_dir: Path, identifier: str, manifest: Manifest | None = None):
        self.identifier = identifier
        self.sync_path = content_dir / identifier
        self.manifest = manifest if manifest is not None else Manifest()

    def prepare(self) -> None:
        """Recreate the project folder."""
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
            raise TerminalUploadError(f"Failed to write {target}: {e}") from e

        return UploadResult.success(f"rbxasset://{self.identifier}/{rel_path}")

    def upload_image(self, request: UploadRequest) -> UploadResult:
        return self._write(request)

    def upload_audio(self, request: UploadRequest) -> UploadResult:
        return self._write(request)

    def upload_video(self, request: UploadRequest) -> UploadResult:
        return self._write(request)

    def upload_model(self, request: UploadRequest) -> UploadResult:
        return self._write(request)

    def upload_animation(self, request: UploadRequest) -> UploadResult:
        entry = self.manifest.get(request.key)
        if entry is not None and entry.hash == request.hash:
            return UploadResult.success(entry.identifier)

        logger.warning("Animations cannot be synced to studio: %s", request.key)
        raise TerminalUploadError(
            "Animations cannot be synced to studio; sync this animation to the cloud first"
        )
