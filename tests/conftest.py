"""Shared fixtures for the sync engine tests."""

import io
import itertools
import logging
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import numpy as np
import pytest
from PIL import Image

from game_asset_sync.backends.base import UploadRequest
from game_asset_sync.config import Config, parse_config
from game_asset_sync.core.types import UploadResult


class RecordingBackend:
    """In-memory backend that records every call.

    Args:
        persistent: Whether the backend behaves like the cloud target
        errors: File name -> exception (or list of exceptions, raised in
            order before succeeding) to raise for that asset
    """

    name = "recording"

    def __init__(self, persistent: bool = True, errors: dict[str, Any] | None = None):
        self.persistent = persistent
        self.errors = errors or {}
        self.calls: list[UploadRequest] = []
        self._ids = itertools.count(1000)
        self._lock = threading.Lock()

    def _upload(self, request: UploadRequest) -> UploadResult:
        with self._lock:
            self.calls.append(request)
            error = self.errors.get(request.key.file_name)
            if isinstance(error, list):
                error = error.pop(0) if error else None
            if error is not None:
                raise error
            return UploadResult.success(f"rbxassetid://{next(self._ids)}")

    upload_image = _upload
    upload_audio = _upload
    upload_video = _upload
    upload_model = _upload
    upload_animation = _upload


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture(autouse=True)
def restore_package_logger() -> Iterator[None]:
    """Undo the CLI's logging setup so caplog keeps seeing records."""
    logger = logging.getLogger("game_asset_sync")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def make_config(project_dir: Path, inputs: dict[str, dict] | None = None, **sections: Any) -> Config:
    """Build a Config for a project directory from plain dicts."""
    document = {
        "creator": {"type": "user", "id": 1},
        "inputs": inputs or {"assets": {"path": "assets/**/*", "output_path": "src"}},
    }
    document.update(sections)
    return parse_config(document, project_dir)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Project directory with an empty assets/ input folder."""
    (tmp_path / "assets").mkdir()
    return tmp_path


def write_file(root: Path, rel_path: str, data: bytes) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def png_bytes(rgba: np.ndarray) -> bytes:
    """Encode an RGBA uint8 array as PNG."""
    buffer = io.BytesIO()
    Image.fromarray(rgba.astype(np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


def decode_rgba(data: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(data)) as image:
        return np.asarray(image.convert("RGBA"))
