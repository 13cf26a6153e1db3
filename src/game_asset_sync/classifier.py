"""Asset classification.

Most kinds follow directly from the file extension. Two extensions need a
look at the content:

- model containers (.rbxm/.rbxmx) carry either a rigid model or an
  animation clip, told apart by the class of their root object
- .ogg files are usually audio, but an Ogg Theora stream is a video
"""

import io
import logging
from collections.abc import Iterable

import mutagen
from mutagen.oggflac import OggFLAC
from mutagen.oggopus import OggOpus
from mutagen.oggspeex import OggSpeex
from mutagen.oggtheora import OggTheora
from mutagen.oggvorbis import OggVorbis

from .containers import is_animation
from .core.errors import ConfigurationError
from .core.types import AssetKind, DiscoveredAsset

logger = logging.getLogger(__name__)

EXTENSION_KINDS: dict[str, AssetKind] = {
    "png": AssetKind.IMAGE,
    "jpg": AssetKind.IMAGE,
    "jpeg": AssetKind.IMAGE,
    "bmp": AssetKind.IMAGE,
    "tga": AssetKind.IMAGE,
    "svg": AssetKind.SVG,
    "mp3": AssetKind.AUDIO,
    "ogg": AssetKind.AUDIO,
    "flac": AssetKind.AUDIO,
    "wav": AssetKind.AUDIO,
    "mp4": AssetKind.VIDEO,
    "mov": AssetKind.VIDEO,
    "fbx": AssetKind.MODEL,
}

CONTAINER_EXTENSIONS = frozenset({"rbxm", "rbxmx"})

SUPPORTED_EXTENSIONS = frozenset(EXTENSION_KINDS) | CONTAINER_EXTENSIONS

OGG_TYPES = [OggTheora, OggVorbis, OggOpus, OggFLAC, OggSpeex]


def check_supported(assets: Iterable[DiscoveredAsset]) -> None:
    """Reject files whose extension no backend can take.

    Raises:
        ConfigurationError: Listing every unsupported file
    """
    unsupported = [str(a.key) for a in assets if a.extension not in SUPPORTED_EXTENSIONS]
    if unsupported:
        raise ConfigurationError(
            "Unsupported file types matched by inputs (narrow the glob to exclude them):\n  "
            + "\n  ".join(unsupported)
        )


def _detect_ogg_kind(data: bytes) -> AssetKind:
    try:
        detected = mutagen.File(io.BytesIO(data), options=OGG_TYPES)
    except mutagen.MutagenError as e:
        # Let the backend judge streams mutagen can't read
        logger.debug("Could not read Ogg stream: %s", e)
        return AssetKind.AUDIO

    if isinstance(detected, OggTheora):
        return AssetKind.VIDEO
    return AssetKind.AUDIO


def classify(data: bytes, extension: str) -> AssetKind:
    """Determine the kind of an asset.

    Args:
        data: Raw file bytes
        extension: File extension, with or without the leading dot

    Returns:
        The asset kind

    Raises:
        ConfigurationError: If the extension is not supported
        ClassificationError: If a model container cannot be parsed
    """
    extension = extension.lower().lstrip(".")

    if extension in CONTAINER_EXTENSIONS:
        if is_animation(data):
            return AssetKind.ANIMATION
        return AssetKind.MODEL

    if extension == "ogg":
        return _detect_ogg_kind(data)

    try:
        return EXTENSION_KINDS[extension]
    except KeyError:
        raise ConfigurationError(f"Unsupported file extension: .{extension}") from None
