"""Cloud backend: creates real assets through the CloudClient."""

import logging
from pathlib import PurePosixPath

from ...core.errors import InvalidContentError
from ...core.types import AssetKind, UploadResult
from ..base import UploadRequest
from .client import CloudClient

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "bmp": "image/bmp",
    "tga": "image/tga",
    "mp3": "audio/mpeg",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "wav": "audio/wav",
    "mp4": "video/mp4",
    "mov": "video/mov",
    "fbx": "model/fbx",
    "rbxm": "model/x-rbxm",
    "rbxmx": "model/x-rbxm",
}


def asset_identifier(asset_id: int) -> str:
    return f"rbxassetid://{asset_id}"


def content_type(file_name: str) -> str:
    extension = PurePosixPath(file_name).suffix.lstrip(".").lower()
    return CONTENT_TYPES.get(extension, "application/octet-stream")


class CloudBackend:
    """Backend that uploads to the cloud asset service.

    Args:
        client: Authenticated API client
        expected_price: Price acknowledgement for video uploads
    """

    name = "cloud"
    persistent = True

    def __init__(self, client: CloudClient, expected_price: int | None = None):
        self.client = client
        self.expected_price = expected_price

    def _create(self, request: UploadRequest, kind: AssetKind, expected_price: int | None = None) -> UploadResult:
        file_name = request.file_name
        logger.debug("Creating %s asset %s for %s", kind.value, file_name, request.key)
        asset_id = self.client.create_asset(
            kind,
            request.data,
            file_name,
            content_type(file_name),
            expected_price=expected_price,
        )
        return UploadResult.success(asset_identifier(asset_id), price=expected_price)

    def upload_image(self, request: UploadRequest) -> UploadResult:
        return self._create(request, AssetKind.IMAGE)

    def upload_audio(self, request: UploadRequest) -> UploadResult:
        return self._create(request, AssetKind.AUDIO)

    def upload_video(self, request: UploadRequest) -> UploadResult:
        if self.expected_price is None:
            raise InvalidContentError(
                "Video uploads cost money; pass --expected-price to acknowledge the price"
            )
        return self._create(request, AssetKind.VIDEO, expected_price=self.expected_price)

    def upload_model(self, request: UploadRequest) -> UploadResult:
        return self._create(request, AssetKind.MODEL)

    def upload_animation(self, request: UploadRequest) -> UploadResult:
        return self._create(request, AssetKind.ANIMATION)
