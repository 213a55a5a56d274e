"""Tests for tolerance module: component-wise byte tolerance."""

from __future__ import annotations

import pytest

from snapcheck.errors import DimensionMismatch
from snapcheck.pixels import CanonicalBuffer
from snapcheck.tolerance import count_differing_bytes, tolerance_compare
from snapcheck.verdict import Match, Mismatch

# 2x1 pixels, 8 bytes, differing only in the first red byte
_A = CanonicalBuffer(2, 1, bytes([10, 20, 30, 255, 40, 50, 60, 255]))
_B = CanonicalBuffer(2, 1, bytes([11, 20, 30, 255, 40, 50, 60, 255]))


class TestCountDifferingBytes:
    def test_counts_components_not_pixels(self) -> None:
        c = CanonicalBuffer(2, 1, bytes([11, 21, 31, 255, 40, 50, 60, 255]))
        assert count_differing_bytes(_A, c) == 3

    def test_identical(self) -> None:
        assert count_differing_bytes(_A, _A) == 0

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(DimensionMismatch):
            count_differing_bytes(_A, CanonicalBuffer(1, 2, bytes(8)))


class TestToleranceBoundary:
    def test_exact_threshold_matches(self) -> None:
        """threshold = floor(0.125 * 8) = 1, differing = 1."""
        assert tolerance_compare(_A, _B, 0.875) == Match()

    def test_just_above_threshold_mismatches(self) -> None:
        """threshold = floor(0.1 * 8) = 0, differing = 1."""
        verdict = tolerance_compare(_A, _B, 0.9)
        assert isinstance(verdict, Mismatch)
        assert verdict.message == "Actual image precision 0.875 is less than required 0.9"

    def test_full_precision_is_byte_equality(self) -> None:
        assert tolerance_compare(_A, _A, 1.0).matched
        assert not tolerance_compare(_A, _B, 1.0).matched

    def test_zero_precision_accepts_anything(self) -> None:
        inverted = CanonicalBuffer(2, 1, bytes(255 - b for b in _A.data))
        assert tolerance_compare(_A, inverted, 0.0).matched
