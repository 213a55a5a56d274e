"""Byte-level tolerance comparison.

Bytes are counted component by component: a pixel whose red channel alone
differs contributes one differing byte, not one differing pixel.
"""

from __future__ import annotations

import logging

import numpy as np

from snapcheck.errors import DimensionMismatch
from snapcheck.pixels import CanonicalBuffer
from snapcheck.verdict import Match, Mismatch, Verdict

log = logging.getLogger(__name__)


def count_differing_bytes(a: CanonicalBuffer, b: CanonicalBuffer) -> int:
    if (a.width, a.height) != (b.width, b.height):
        raise DimensionMismatch(f"buffer size {a.width}x{a.height} vs {b.width}x{b.height}")
    return int(np.count_nonzero(a.as_array() != b.as_array()))


def tolerance_compare(a: CanonicalBuffer, b: CanonicalBuffer, pixel_precision: float) -> Verdict:
    """Match if at most ``floor((1 - pixel_precision) * total)`` bytes differ.

    Raises:
        DimensionMismatch: If the buffers differ in width or height.
    """
    total = a.byte_count
    threshold = int((1 - pixel_precision) * total)
    differing = count_differing_bytes(a, b)
    log.debug("%d/%d bytes differ (threshold %d)", differing, total, threshold)
    if differing > threshold:
        actual = 1 - differing / total
        return Mismatch(f"Actual image precision {actual} is less than required {pixel_precision}")
    return Match()
