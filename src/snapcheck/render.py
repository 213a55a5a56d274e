"""Difference visualization."""

from __future__ import annotations

import math

from PIL import Image as PILImage
from PIL import ImageChops

from snapcheck.image import Image
from snapcheck.pixels import to_srgb_rgba


def _pixels(logical: float, scale: float) -> int:
    # round first so 7 / 3 * 3 does not become 8
    return math.ceil(round(logical * scale, 6))


def _at_scale(raster: PILImage.Image, image: Image, scale: float) -> PILImage.Image:
    rgba = to_srgb_rgba(raster)
    if image.scale == scale:
        return rgba
    width, height = image.size
    return rgba.resize((_pixels(width, scale), _pixels(height, scale)), PILImage.Resampling.BILINEAR)


def render_difference(old: Image, new: Image) -> Image:
    """Composite *old* over *new* with a difference blend.

    The canvas is the union of both logical sizes at the larger scale, so
    neither input is clipped. Identical pixels come out black; differing
    pixels show their channel-wise absolute difference. Neither input is
    modified.

    Raises:
        ValueError: If either image is empty or has no raster.
        OSError: If a raster's pixel data cannot be read.
    """
    if old.raster is None or old.is_empty:
        raise ValueError("cannot render difference: old image is empty")
    if new.raster is None or new.is_empty:
        raise ValueError("cannot render difference: new image is empty")

    scale = max(old.scale, new.scale)
    width = max(old.size[0], new.size[0])
    height = max(old.size[1], new.size[1])
    canvas = PILImage.new("RGB", (_pixels(width, scale), _pixels(height, scale)), (0, 0, 0))

    top = _at_scale(new.raster, new, scale)
    canvas.paste(top.convert("RGB"), (0, 0), top)

    bottom = _at_scale(old.raster, old, scale)
    box = (0, 0, bottom.width, bottom.height)
    blended = ImageChops.difference(canvas.crop(box), bottom.convert("RGB"))
    canvas.paste(blended, box, bottom.getchannel("A"))
    return Image(canvas, scale)
