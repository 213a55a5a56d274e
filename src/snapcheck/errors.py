"""Error taxonomy for image comparison.

Every error is terminal for a single ``compare`` call. ``compare`` turns
them into a ``Mismatch`` verdict carrying ``str(exc)`` as the message,
except ``MetricUnavailable`` which is recovered by the byte-tolerance path.
"""

from __future__ import annotations


class CompareError(Exception):
    """Base class for comparison failures."""


class DecodeError(CompareError):
    """An image handle could not yield pixel data."""


class EmptyImageError(CompareError):
    """An image has zero width or height."""


class DimensionMismatch(CompareError):
    """Reference and candidate differ in width or height."""


class MetricUnavailable(CompareError):
    """The perceptual metric could not produce a result."""
