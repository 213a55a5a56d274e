"""Canonical pixel extraction and byte-exact comparison.

Every image is redrawn into the same layout (sRGB, 8 bits per component,
RGBA with premultiplied alpha, row-major, top-left origin) so that bytes of a
reference decoded from disk and a candidate rendered live can be compared
directly.
"""

from __future__ import annotations

import functools
import io
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image as PILImage
from PIL import ImageCms

from snapcheck.config import CANONICAL_FORMAT, PixelFormat
from snapcheck.errors import DecodeError, DimensionMismatch, EmptyImageError
from snapcheck.image import READ_ERRORS, Image

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CanonicalBuffer:
    """Decoded RGBA8 pixels, premultiplied alpha last."""

    width: int
    height: int
    data: bytes

    def __post_init__(self) -> None:
        expected = self.width * self.height * CANONICAL_FORMAT.bytes_per_pixel
        if len(self.data) != expected:
            raise ValueError(
                f"buffer holds {len(self.data)} bytes, expected {expected} "
                f"for {self.width}x{self.height}"
            )

    @property
    def stride(self) -> int:
        return self.width * CANONICAL_FORMAT.bytes_per_pixel

    @property
    def byte_count(self) -> int:
        return len(self.data)

    def as_array(self) -> np.ndarray:
        """Read-only ``(height, width, 4)`` uint8 view of the buffer."""
        return np.frombuffer(self.data, dtype=np.uint8).reshape(
            self.height, self.width, CANONICAL_FORMAT.bytes_per_pixel
        )


@functools.lru_cache(maxsize=1)
def _srgb_profile() -> ImageCms.ImageCmsProfile:
    return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB"))


def to_srgb_rgba(raster: PILImage.Image) -> PILImage.Image:
    """Convert *raster* to straight-alpha RGBA in sRGB.

    An embedded ICC profile is honoured; one that LittleCMS cannot apply is
    logged and the pixels are taken as sRGB.
    """
    icc = raster.info.get("icc_profile")
    if icc:
        try:
            source = ImageCms.getOpenProfile(io.BytesIO(icc))
            if raster.mode == "CMYK":
                rgb = ImageCms.profileToProfile(raster, source, _srgb_profile(), outputMode="RGB")
                return rgb.convert("RGBA")
            return ImageCms.profileToProfile(
                raster.convert("RGBA"), source, _srgb_profile(), outputMode="RGBA"
            )
        except ImageCms.PyCMSError as exc:
            log.warning("ignoring unusable ICC profile: %s", exc)
    return raster.convert("RGBA")


def _check_format(pixel_format: PixelFormat) -> None:
    if pixel_format != CANONICAL_FORMAT:
        raise ValueError(f"unsupported pixel format: {pixel_format}")


def extract(image: Image, pixel_format: PixelFormat = CANONICAL_FORMAT) -> CanonicalBuffer:
    """Draw *image* into a fresh canonical buffer.

    Args:
        image: Source image; not modified.
        pixel_format: Target layout. Only ``CANONICAL_FORMAT`` is supported.

    Returns:
        A newly allocated CanonicalBuffer.

    Raises:
        DecodeError: If the raster is absent or its pixels cannot be read.
        EmptyImageError: If width or height is zero.
    """
    _check_format(pixel_format)
    if image.raster is None:
        raise DecodeError("image has no backing raster")
    if image.is_empty:
        raise EmptyImageError(f"image is empty ({image.width}x{image.height})")
    try:
        rgba = to_srgb_rgba(image.raster)
    except READ_ERRORS as exc:
        raise DecodeError(f"cannot read pixel data: {exc}") from exc

    pixels = np.array(rgba, dtype=np.uint8)
    alpha = pixels[..., 3:4].astype(np.uint16)
    premultiplied = (pixels[..., :3].astype(np.uint16) * alpha + 127) // 255
    pixels[..., :3] = premultiplied.astype(np.uint8)
    return CanonicalBuffer(image.width, image.height, pixels.tobytes())


def equal_bytes(a: CanonicalBuffer, b: CanonicalBuffer) -> bool:
    """Return True iff both buffers hold exactly the same bytes.

    Raises:
        DimensionMismatch: If the buffers differ in width or height.
    """
    if (a.width, a.height) != (b.width, b.height):
        raise DimensionMismatch(f"buffer size {a.width}x{a.height} vs {b.width}x{b.height}")
    return a.data == b.data
