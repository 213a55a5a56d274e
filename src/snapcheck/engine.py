"""Reference-vs-candidate image comparison.

``compare`` walks a single linear decision tree:

    raster present -> candidate non-empty -> reference non-empty -> same size
    -> byte-equal (live candidate) -> byte-equal (PNG round-tripped candidate)
    -> exact required? mismatch
    -> perceptual Delta-E when requested and a metric is available,
       otherwise byte tolerance

Any failing verdict gets three images attached: the reference, the failing
candidate (a placeholder when it is empty or unreadable) and their
difference.
"""

from __future__ import annotations

import dataclasses
import logging

from snapcheck.config import CANONICAL_FORMAT, METRIC_NAMES, PixelFormat, load_settings
from snapcheck.errors import (
    CompareError,
    DecodeError,
    DimensionMismatch,
    EmptyImageError,
    MetricUnavailable,
)
from snapcheck.image import READ_ERRORS, Image, decode, encode, placeholder_image
from snapcheck.perceptual import DeltaEMetric, find_metric, perceptual_compare
from snapcheck.pixels import CanonicalBuffer, equal_bytes, extract
from snapcheck.render import render_difference
from snapcheck.tolerance import tolerance_compare
from snapcheck.verdict import Match, Mismatch, Verdict

__all__ = ["Match", "Mismatch", "Verdict", "compare"]

log = logging.getLogger(__name__)

REFERENCE_MISSING = "Reference image could not be loaded."
CANDIDATE_MISSING = "Newly-taken snapshot could not be loaded."
CANDIDATE_EMPTY = "Newly-taken snapshot is empty."
REFERENCE_EMPTY = "Reference image is empty."
REFERENCE_DATA = "Reference image's data could not be loaded."
CANDIDATE_DATA = "Newly-taken snapshot's data could not be loaded."
EXACT_MISMATCH = "Newly-taken snapshot does not match reference."


def _check_precision(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


def _resolve_metric(metric: DeltaEMetric | str | None) -> DeltaEMetric | None:
    if not isinstance(metric, str):
        return metric
    settings = load_settings()
    name = settings.metric if metric == "auto" else metric
    return find_metric(name, device=settings.device, formula=settings.formula)


def _size_text(image: Image) -> str:
    width, height = image.size
    return f"{width:g}x{height:g}"


def _extract_live(candidate: Image, pixel_format: PixelFormat) -> CanonicalBuffer | None:
    try:
        return extract(candidate, pixel_format)
    except DecodeError as exc:
        log.debug("live candidate unreadable, relying on PNG round trip: %s", exc)
        return None


def _evaluate(
    reference: Image,
    candidate: Image,
    pixel_precision: float,
    perceptual_precision: float,
    metric: DeltaEMetric | str | None,
    pixel_format: PixelFormat,
) -> Verdict:
    if reference.raster is None:
        raise DecodeError(REFERENCE_MISSING)
    if candidate.raster is None:
        raise DecodeError(CANDIDATE_MISSING)
    if candidate.is_empty:
        raise EmptyImageError(CANDIDATE_EMPTY)
    if reference.is_empty:
        raise EmptyImageError(REFERENCE_EMPTY)
    if (reference.width, reference.height) != (candidate.width, candidate.height):
        raise DimensionMismatch(
            f"Newly-taken snapshot@{_size_text(candidate)} "
            f"does not match reference@{_size_text(reference)}."
        )

    try:
        old = extract(reference, pixel_format)
    except DecodeError as exc:
        raise DecodeError(REFERENCE_DATA) from exc

    live = _extract_live(candidate, pixel_format)
    if live is not None and equal_bytes(old, live):
        log.debug("candidate is byte-identical to reference")
        return Match()

    try:
        reencoded = decode(encode(candidate), candidate.scale)
        newer = extract(reencoded, pixel_format)
    except DecodeError as exc:
        raise DecodeError(CANDIDATE_DATA) from exc
    if equal_bytes(old, newer):
        log.debug("candidate is byte-identical to reference after PNG round trip")
        return Match()

    if pixel_precision >= 1 and perceptual_precision >= 1:
        return Mismatch(EXACT_MISMATCH)

    if perceptual_precision < 1:
        resolved = _resolve_metric(metric)
        if resolved is None:
            log.debug("no perceptual metric available; using byte tolerance")
        else:
            try:
                return perceptual_compare(
                    reference,
                    candidate if live is not None else reencoded,
                    pixel_precision,
                    perceptual_precision,
                    resolved,
                    pixel_format,
                )
            except MetricUnavailable as exc:
                log.warning("perceptual metric failed, falling back to byte tolerance: %s", exc)
    return tolerance_compare(old, newer, pixel_precision)


def _renderable(image: Image) -> bool:
    if image.raster is None or image.is_empty:
        return False
    try:
        image.raster.load()
    except READ_ERRORS as exc:
        log.debug("image not renderable: %s", exc)
        return False
    return True


def _attach_artifacts(verdict: Mismatch, reference: Image, candidate: Image) -> Mismatch:
    old = reference if _renderable(reference) else placeholder_image()
    new = candidate if _renderable(candidate) else placeholder_image()
    return dataclasses.replace(
        verdict,
        reference=old,
        failure=new,
        difference=render_difference(old, new),
    )


def compare(
    reference: Image,
    candidate: Image,
    pixel_precision: float = 1.0,
    perceptual_precision: float = 1.0,
    *,
    metric: DeltaEMetric | str | None = "auto",
    pixel_format: PixelFormat = CANONICAL_FORMAT,
) -> Verdict:
    """Decide whether *candidate* is close enough to *reference*.

    Args:
        reference: Previously accepted image.
        candidate: Newly produced image.
        pixel_precision: Minimum fraction of matching bytes, in [0, 1].
        perceptual_precision: Minimum per-pixel perceptual closeness, in
            [0, 1]; ``1 - max(Delta-E) / 100`` must reach it.
        metric: Delta-E backend instance, backend name (``"numpy"``,
            ``"torch"``, ``"none"``), ``"auto"`` for the ``SNAPCHECK_METRIC``
            setting, or None to disable the perceptual path.
        pixel_format: Canonical layout both images are drawn into.

    Returns:
        ``Match()``, or a ``Mismatch`` with message and reference, failure
        and difference images.

    Raises:
        ValueError: If a precision is outside [0, 1] or *metric* names no
            known backend.
    """
    _check_precision("pixel_precision", pixel_precision)
    _check_precision("perceptual_precision", perceptual_precision)
    if isinstance(metric, str) and metric != "auto" and metric not in METRIC_NAMES:
        raise ValueError(f"unknown metric backend: {metric!r}")

    try:
        verdict = _evaluate(
            reference, candidate, pixel_precision, perceptual_precision, metric, pixel_format
        )
    except CompareError as exc:
        verdict = Mismatch(str(exc))

    if isinstance(verdict, Match):
        return verdict
    log.debug("mismatch: %s", verdict.message)
    return _attach_artifacts(verdict, reference, candidate)
