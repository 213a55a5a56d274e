"""Image handle and PNG codec.

``Image`` is the opaque raster asset handed to ``compare``: a Pillow image
plus the logical-to-physical scale it was produced at. A handle without a
raster models a backing image that could not be obtained at all.
"""

from __future__ import annotations

import io
import textwrap
from dataclasses import dataclass
from pathlib import Path

from PIL import Image as PILImage
from PIL import ImageDraw, ImageFont

from snapcheck.errors import DecodeError

PLACEHOLDER_SIZE = (400, 80)
PLACEHOLDER_TEXT = (
    "Error: No image could be generated for this view as its size was zero. "
    "Please set an explicit size in the test."
)

# Pillow plugins also raise SyntaxError on malformed data during load
READ_ERRORS = (OSError, ValueError, SyntaxError)

_PNG_MODES = frozenset({"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"})


@dataclass(frozen=True, eq=False)
class Image:
    """Raster plus scale factor; never mutated once built."""

    raster: PILImage.Image | None
    scale: float = 1.0

    def __post_init__(self) -> None:
        if self.scale <= 0:
            raise ValueError(f"scale must be positive, got {self.scale}")

    @property
    def width(self) -> int:
        return self.raster.width if self.raster is not None else 0

    @property
    def height(self) -> int:
        return self.raster.height if self.raster is not None else 0

    @property
    def size(self) -> tuple[float, float]:
        """Logical size: pixel dimensions divided by scale."""
        return (self.width / self.scale, self.height / self.scale)

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0


def encode(image: Image) -> bytes:
    """Encode *image* as PNG.

    An empty or raster-less image encodes the placeholder instead, so the
    result is always a decodable PNG.

    Raises:
        DecodeError: If the raster's pixel data cannot be read.
    """
    raster = placeholder_image().raster if image.is_empty else image.raster
    assert raster is not None
    params: dict[str, bytes] = {}
    if raster.mode in _PNG_MODES and raster.info.get("icc_profile"):
        params["icc_profile"] = raster.info["icc_profile"]
    buf = io.BytesIO()
    try:
        if raster.mode not in _PNG_MODES:
            raster = raster.convert("RGBA")
        raster.save(buf, format="PNG", **params)
    except READ_ERRORS as exc:
        raise DecodeError(f"cannot encode image: {exc}") from exc
    return buf.getvalue()


def decode(data: bytes, scale: float = 1.0) -> Image:
    """Decode image bytes (any format Pillow reads) into an ``Image``.

    Raises:
        DecodeError: If *data* is not a readable image.
    """
    try:
        raster = PILImage.open(io.BytesIO(data))
        raster.load()
    except READ_ERRORS as exc:
        raise DecodeError(f"cannot decode image: {exc}") from exc
    return Image(raster, scale)


def load(path: Path | str, scale: float = 1.0) -> Image:
    """Read and decode an image file.

    Raises:
        FileNotFoundError: If *path* does not exist.
        DecodeError: If the file is not a readable image.
    """
    return decode(Path(path).read_bytes(), scale)


def save(image: Image, path: Path | str) -> Path:
    """Write *image* to *path* as PNG and return the path."""
    dest = Path(path)
    dest.write_bytes(encode(image))
    return dest


def placeholder_image() -> Image:
    """Red label image shown in place of a zero-sized snapshot."""
    raster = PILImage.new("RGBA", PLACEHOLDER_SIZE, (255, 0, 0, 255))
    draw = ImageDraw.Draw(raster)
    font = ImageFont.load_default()
    text = textwrap.fill(PLACEHOLDER_TEXT, width=60)
    left, top, right, bottom = draw.multiline_textbbox((0, 0), text, font=font, align="center")
    x = (PLACEHOLDER_SIZE[0] - (right - left)) / 2 - left
    y = (PLACEHOLDER_SIZE[1] - (bottom - top)) / 2 - top
    draw.multiline_text((x, y), text, fill=(0, 0, 0, 255), font=font, align="center")
    return Image(raster, 1.0)
