"""Image preprocessing.

Deterministic transforms applied to Image and Svg assets before hashing:
vector rasterization and alpha bleeding. Whatever these produce is what
gets hashed and uploaded, so toggling a transform only causes a re-upload
when the output bytes actually differ.
"""

import io
import logging

import numpy as np
from PIL import Image, UnidentifiedImageError

from .core.errors import PreprocessError
from .core.types import AssetKind

logger = logging.getLogger(__name__)

# Offsets of the 8-neighbourhood
NEIGHBOURS = [(dy, dx) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if (dy, dx) != (0, 0)]


def rasterize_svg(data: bytes) -> bytes:
    """Render an SVG document to PNG at its intrinsic size.

    Raises:
        PreprocessError: If the document is malformed or cannot be rendered
    """
    try:
        import cairosvg
    except (ImportError, OSError) as e:
        # cairosvg needs the native cairo library at import time
        raise PreprocessError(f"SVG rendering is unavailable: {e}") from e

    try:
        png = cairosvg.svg2png(bytestring=data)
    except Exception as e:
        raise PreprocessError(f"Failed to render SVG: {e}") from e

    if not png:
        raise PreprocessError("SVG rendered to an empty image")
    return png


def bleed_pixels(rgba: np.ndarray) -> np.ndarray:
    """Extrapolate colour into fully transparent pixels.

    Pixels with non-zero alpha are sources. The fill grows one ring at a
    time; each newly reached transparent pixel takes the integer mean
    colour of its already-filled neighbours, so it ends up with the
    colour of its nearest sources. Alpha is never changed.

    Args:
        rgba: Array of shape (height, width, 4), dtype uint8

    Returns:
        New array with the colour channels of transparent pixels filled
    """
    height, width = rgba.shape[:2]
    filled = rgba[..., 3] > 0
    colors = rgba[..., :3].astype(np.int64)
    colors[~filled] = 0

    while True:
        padded_colors = np.pad(colors * filled[..., None], ((1, 1), (1, 1), (0, 0)))
        padded_filled = np.pad(filled, 1).astype(np.int64)

        sums = np.zeros_like(colors)
        counts = np.zeros((height, width), dtype=np.int64)
        for dy, dx in NEIGHBOURS:
            rows = slice(1 + dy, 1 + dy + height)
            cols = slice(1 + dx, 1 + dx + width)
            sums += padded_colors[rows, cols]
            counts += padded_filled[rows, cols]

        frontier = ~filled & (counts > 0)
        if not frontier.any():
            break

        colors[frontier] = sums[frontier] // counts[frontier][:, None]
        filled |= frontier

    out = rgba.copy()
    out[..., :3] = colors.astype(np.uint8)
    return out


def alpha_bleed(data: bytes) -> bytes:
    """Apply alpha bleeding to an encoded image.

    Images without fully transparent pixels (or without any opaque pixel
    to bleed from) are returned unchanged. Everything else is re-encoded
    as PNG. Applying the transform to its own output yields the same bytes.

    Raises:
        PreprocessError: If the image cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            rgba = np.asarray(image.convert("RGBA"), dtype=np.uint8)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise PreprocessError(f"Failed to decode image: {e}") from e

    alpha = rgba[..., 3]
    if not (alpha == 0).any() or not (alpha > 0).any():
        return data

    bled = bleed_pixels(rgba)

    buffer = io.BytesIO()
    Image.fromarray(bled).save(buffer, format="PNG")
    return buffer.getvalue()


def preprocess(data: bytes, kind: AssetKind, bleed: bool = True) -> tuple[bytes, AssetKind]:
    """Run the image pipeline for one asset.

    Args:
        data: Raw file bytes
        kind: Classified kind
        bleed: Whether alpha bleeding is enabled for the asset's input

    Returns:
        Tuple of (processed bytes, kind after processing). Svg assets come
        out as Image.

    Raises:
        PreprocessError: If rasterization or decoding fails
    """
    if not kind.is_image:
        return data, kind

    if kind is AssetKind.SVG:
        data = rasterize_svg(data)
        kind = AssetKind.IMAGE

    if bleed:
        data = alpha_bleed(data)

    return data, kind
