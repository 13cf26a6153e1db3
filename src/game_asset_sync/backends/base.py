"""Backend interface.

A backend is the target of a sync: the networked cloud service, the local
editor's content directory, or a debug directory. All three fulfil the
same per-kind upload contract, so the engine never knows which one it is
talking to. Backends are duck-typed against the Backend protocol and are
selected at startup through the BackendRegistry.
"""

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Protocol, runtime_checkable

from ..config import Creator
from ..core.types import AssetKey, AssetKind, UploadResult
from ..credentials import Credentials
from ..lockfile import Manifest

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


@dataclass(frozen=True)
class UploadRequest:
    """One backend call.

    Attributes:
        key: Logical key of the asset that claimed the upload
        kind: Kind of the asset (Svg assets arrive here already rasterized)
        data: Processed bytes
        hash: ContentHash of data
    """

    key: AssetKey
    kind: AssetKind
    data: bytes
    hash: str

    @property
    def output_path(self) -> PurePosixPath:
        """Key path, suffixed with .png when the processed bytes are PNG.

        Rasterized and alpha-bled images are PNG whatever their source
        extension was. The source extension is kept (x.tga -> x.tga.png)
        so x.tga and x.png in one directory never share an output path.
        """
        path = PurePosixPath(self.key.path)
        if self.kind.is_image and self.data.startswith(PNG_MAGIC) and path.suffix.lower() != ".png":
            return path.with_name(f"{path.name}.png")
        return path

    @property
    def file_name(self) -> str:
        return self.output_path.name


@dataclass
class BackendParams:
    """Everything a backend factory may need.

    Attributes:
        project_dir: Project directory (debug output lives under it)
        creator: Owner of uploaded assets
        credentials: API key and cookie
        expected_price: Price acknowledgement for video uploads
        manifest: Manifest loaded at startup, read-only
    """

    project_dir: Path
    creator: Creator
    credentials: Credentials = field(default_factory=Credentials)
    expected_price: int | None = None
    manifest: Manifest = field(default_factory=Manifest)


@runtime_checkable
class Backend(Protocol):
    """Per-kind upload contract.

    Each operation returns a successful UploadResult or raises an
    UploadError subclass describing why the call failed.

    Attributes:
        name: Registry name of the backend
        persistent: Whether identifiers survive the run. Only persistent
            backends take part in change detection against the manifest
            and write it back.
    """

    name: str
    persistent: bool

    def upload_image(self, request: UploadRequest) -> UploadResult: ...

    def upload_audio(self, request: UploadRequest) -> UploadResult: ...

    def upload_video(self, request: UploadRequest) -> UploadResult: ...

    def upload_model(self, request: UploadRequest) -> UploadResult: ...

    def upload_animation(self, request: UploadRequest) -> UploadResult: ...


def operation_for(backend: Backend, kind: AssetKind) -> Callable[[UploadRequest], UploadResult]:
    """Select the backend operation that handles a kind."""
    operations = {
        AssetKind.IMAGE: backend.upload_image,
        AssetKind.AUDIO: backend.upload_audio,
        AssetKind.VIDEO: backend.upload_video,
        AssetKind.MODEL: backend.upload_model,
        AssetKind.ANIMATION: backend.upload_animation,
    }
    return operations[kind.upload_kind]


def dispatch(backend: Backend, request: UploadRequest) -> UploadResult:
    return operation_for(backend, request.kind)(request)
