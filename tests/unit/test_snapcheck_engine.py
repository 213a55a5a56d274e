"""Tests for engine.compare: decision tree, verdicts and artifacts."""

from __future__ import annotations

import itertools
import logging

import numpy as np
import pytest
from PIL import Image as PILImage

from snapcheck.engine import (
    CANDIDATE_EMPTY,
    CANDIDATE_MISSING,
    EXACT_MISMATCH,
    REFERENCE_EMPTY,
    REFERENCE_MISSING,
    compare,
)
from snapcheck.errors import MetricUnavailable
from snapcheck.image import PLACEHOLDER_SIZE, Image
from snapcheck.perceptual import LabDeltaE
from snapcheck.verdict import Match, Mismatch

_PRECISIONS = (0.0, 0.5, 0.9, 0.99, 1.0)


class FixedMetric:
    """Metric stub reporting a fixed maximum Delta-E."""

    name = "fixed"

    def __init__(self, value: float) -> None:
        self.value = value
        self.calls = 0

    def max_delta_e(self, old: np.ndarray, new: np.ndarray) -> float:
        self.calls += 1
        return self.value


class BrokenMetric:
    name = "broken"

    def max_delta_e(self, old: np.ndarray, new: np.ndarray) -> float:
        raise MetricUnavailable("device lost")


def _solid(
    color: tuple[int, ...],
    size: tuple[int, int] = (4, 4),
    mode: str = "RGBA",
    scale: float = 1.0,
) -> Image:
    """Create a solid-color in-memory image."""
    return Image(PILImage.new(mode, size, color), scale)


def _one_byte_apart() -> tuple[Image, Image]:
    """Two 2x1 images differing in exactly one of eight bytes."""
    a = PILImage.new("RGBA", (2, 1), (10, 20, 30, 255))
    b = a.copy()
    b.putpixel((0, 0), (11, 20, 30, 255))
    return Image(a), Image(b)


class TestMatch:
    def test_reflexive(self) -> None:
        img = _solid((12, 34, 56, 255))
        assert compare(img, img) == Match()

    def test_byte_identical_any_precision(self) -> None:
        a = _solid((12, 34, 56, 255))
        b = _solid((12, 34, 56), mode="RGB")
        for p, q in itertools.product(_PRECISIONS, repeat=2):
            assert compare(a, b, p, q) == Match()

    def test_separately_built_images(self) -> None:
        metric = FixedMetric(99.0)
        assert compare(_solid((12, 34, 56, 255)), _solid((12, 34, 56, 255)), metric=metric).matched
        assert metric.calls == 0


class TestMismatch:
    def test_exact_required(self) -> None:
        a, b = _one_byte_apart()
        verdict = compare(a, b)
        assert isinstance(verdict, Mismatch)
        assert verdict.message == EXACT_MISMATCH

    @pytest.mark.parametrize(("p", "q"), list(itertools.product(_PRECISIONS, repeat=2)))
    def test_dimension_sensitive(self, p: float, q: float) -> None:
        a = _solid((0, 0, 0, 255), size=(10, 10))
        b = _solid((0, 0, 0, 255), size=(10, 11))
        verdict = compare(a, b, p, q)
        assert isinstance(verdict, Mismatch)
        assert verdict.message == "Newly-taken snapshot@10x11 does not match reference@10x10."

    def test_dimension_message_uses_logical_size(self) -> None:
        a = _solid((0, 0, 0, 255), size=(20, 20), scale=2.0)
        b = _solid((0, 0, 0, 255), size=(20, 30), scale=2.0)
        verdict = compare(a, b)
        assert isinstance(verdict, Mismatch)
        assert "snapshot@10x15" in verdict.message
        assert "reference@10x10" in verdict.message

    def test_empty_candidate(self) -> None:
        ref = _solid((0, 0, 0, 255), size=(10, 10))
        verdict = compare(ref, _solid((0, 0, 0, 255), size=(0, 10)))
        assert isinstance(verdict, Mismatch)
        assert verdict.message == CANDIDATE_EMPTY
        assert verdict.failure is not None and verdict.difference is not None
        assert (verdict.failure.width, verdict.failure.height) == PLACEHOLDER_SIZE
        assert (verdict.difference.width, verdict.difference.height) == PLACEHOLDER_SIZE

    def test_empty_reference(self) -> None:
        verdict = compare(_solid((0, 0, 0, 255), size=(0, 0)), _solid((0, 0, 0, 255)))
        assert isinstance(verdict, Mismatch)
        assert verdict.message == REFERENCE_EMPTY
        assert verdict.reference is not None
        assert (verdict.reference.width, verdict.reference.height) == PLACEHOLDER_SIZE

    def test_missing_reference(self) -> None:
        verdict = compare(Image(None), _solid((0, 0, 0, 255)))
        assert isinstance(verdict, Mismatch)
        assert verdict.message == REFERENCE_MISSING

    def test_missing_candidate(self) -> None:
        verdict = compare(_solid((0, 0, 0, 255)), Image(None))
        assert isinstance(verdict, Mismatch)
        assert verdict.message == CANDIDATE_MISSING
        assert verdict.failure is not None
        assert (verdict.failure.width, verdict.failure.height) == PLACEHOLDER_SIZE


class TestTolerancePath:
    def test_boundary_match(self) -> None:
        a, b = _one_byte_apart()
        assert compare(a, b, pixel_precision=0.875) == Match()

    def test_boundary_mismatch(self) -> None:
        a, b = _one_byte_apart()
        verdict = compare(a, b, pixel_precision=0.9)
        assert isinstance(verdict, Mismatch)
        assert verdict.message == "Actual image precision 0.875 is less than required 0.9"

    def test_no_metric_uses_tolerance(self) -> None:
        a, b = _one_byte_apart()
        verdict = compare(a, b, 0.9, 0.5, metric=None)
        assert isinstance(verdict, Mismatch)
        assert verdict.message.startswith("Actual image precision")

    def test_metric_none_name(self) -> None:
        a, b = _one_byte_apart()
        assert compare(a, b, 0.875, 0.5, metric="none").matched

    def test_metric_failure_falls_back(self, caplog: pytest.LogCaptureFixture) -> None:
        a, b = _one_byte_apart()
        with caplog.at_level(logging.WARNING, logger="snapcheck.engine"):
            verdict = compare(a, b, 0.9, 0.5, metric=BrokenMetric())
        assert isinstance(verdict, Mismatch)
        assert verdict.message.startswith("Actual image precision")
        assert "device lost" in caplog.text

    def test_perceptual_verdict_overrides_tolerance(self) -> None:
        a, b = _one_byte_apart()
        metric = FixedMetric(100.0)
        verdict = compare(a, b, 0.875, 0.5, metric=metric)
        assert metric.calls == 1
        assert isinstance(verdict, Mismatch)
        assert verdict.message.startswith("Actual perceptual precision")

    def test_flipped_pixel_fails_despite_loose_pixel_precision(self) -> None:
        a = PILImage.new("RGBA", (10, 10), (0, 0, 0, 255))
        b = a.copy()
        b.putpixel((4, 4), (255, 255, 255, 255))
        verdict = compare(Image(a), Image(b), 0.9, 0.99, metric=LabDeltaE())
        assert isinstance(verdict, Mismatch)
        assert "is less than required 0.99" in verdict.message


class TestPerceptualPath:
    def test_boundary_match(self) -> None:
        a, b = _one_byte_apart()
        assert compare(a, b, 1.0, 0.8, metric=FixedMetric(20.0)) == Match()

    def test_boundary_mismatch(self) -> None:
        a, b = _one_byte_apart()
        verdict = compare(a, b, 1.0, 0.81, metric=FixedMetric(20.0))
        assert isinstance(verdict, Mismatch)
        assert verdict.message == "Actual perceptual precision 0.8 is less than required 0.81"

    def test_not_used_when_perceptual_exact(self) -> None:
        a, b = _one_byte_apart()
        metric = FixedMetric(0.0)
        assert compare(a, b, 0.5, 1.0, metric=metric).matched
        assert metric.calls == 0

    def test_auto_uses_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SNAPCHECK_METRIC", "none")
        a, b = _one_byte_apart()
        verdict = compare(a, b, 1.0, 0.5)
        assert isinstance(verdict, Mismatch)
        assert verdict.message.startswith("Actual image precision")

    def test_real_metric_tolerates_small_shift(self) -> None:
        a, b = _one_byte_apart()
        assert compare(a, b, 1.0, 0.99, metric=LabDeltaE()).matched


class TestMonotonicity:
    @staticmethod
    def _grid() -> dict[tuple[float, float], bool]:
        a = PILImage.new("RGBA", (4, 4), (90, 90, 90, 255))
        b = a.copy()
        for x in range(4):
            b.putpixel((x, 0), (96, 90, 90, 255))
        ref, cand = Image(a), Image(b)
        metric = LabDeltaE()
        return {
            (p, q): compare(ref, cand, p, q, metric=metric).matched
            for p, q in itertools.product(_PRECISIONS, repeat=2)
        }

    def test_extremes(self) -> None:
        grid = self._grid()
        assert not grid[(1.0, 1.0)]
        assert grid[(0.0, 0.0)]

    def test_perceptual_verdict_ignores_pixel_precision(self) -> None:
        grid = self._grid()
        for q in _PRECISIONS[:-1]:
            assert len({grid[(p, q)] for p in _PRECISIONS}) == 1, f"q={q}"

    def test_relaxing_perceptual_precision(self) -> None:
        grid = self._grid()
        perceptual = [q for q in _PRECISIONS if q < 1]
        for q1, q2 in itertools.product(perceptual, repeat=2):
            if q2 <= q1 and grid[(1.0, q1)]:
                assert grid[(1.0, q2)], f"match at q={q1} but not at q={q2}"

    def test_relaxing_pixel_precision(self) -> None:
        grid = self._grid()
        for p1, p2 in itertools.product(_PRECISIONS, repeat=2):
            if p2 <= p1 and grid[(p1, 1.0)]:
                assert grid[(p2, 1.0)], f"match at p={p1} but not at p={p2}"


class TestArtifacts:
    def test_three_named_images(self) -> None:
        a, b = _one_byte_apart()
        verdict = compare(a, b)
        assert isinstance(verdict, Mismatch)
        names = [name for name, _ in verdict.artifacts()]
        assert names == ["reference", "failure", "difference"]
        assert verdict.reference is a
        assert verdict.failure is b

    def test_difference_highlights_change(self) -> None:
        a, b = _one_byte_apart()
        verdict = compare(a, b)
        assert isinstance(verdict, Mismatch) and verdict.difference is not None
        diff = verdict.difference.raster
        assert diff is not None
        assert diff.getpixel((0, 0)) == (1, 0, 0)
        assert diff.getpixel((1, 0)) == (0, 0, 0)

    def test_dimension_mismatch_diff_covers_both(self) -> None:
        verdict = compare(_solid((0, 0, 0, 255), (5, 10)), _solid((0, 0, 0, 255), (8, 6)))
        assert isinstance(verdict, Mismatch) and verdict.difference is not None
        assert (verdict.difference.width, verdict.difference.height) == (8, 10)

    def test_match_has_no_artifacts(self) -> None:
        img = _solid((1, 1, 1, 255))
        verdict = compare(img, img)
        assert isinstance(verdict, Match)


class TestValidation:
    @pytest.mark.parametrize("value", [-0.1, 1.01, float("nan")])
    def test_pixel_precision_range(self, value: float) -> None:
        img = _solid((0, 0, 0, 255))
        with pytest.raises(ValueError, match="pixel_precision"):
            compare(img, img, pixel_precision=value)

    def test_perceptual_precision_range(self) -> None:
        img = _solid((0, 0, 0, 255))
        with pytest.raises(ValueError, match="perceptual_precision"):
            compare(img, img, perceptual_precision=2.0)

    def test_unknown_metric_name(self) -> None:
        img = _solid((0, 0, 0, 255))
        with pytest.raises(ValueError, match="unknown metric backend"):
            compare(img, img, metric="vulkan")
