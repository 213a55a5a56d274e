"""Perceptual comparison via CIE L*a*b* Delta-E.

Pipeline per pixel (premultiplied RGBA8, i.e. composited over black):
    sRGB [0, 255] -> linear RGB -> XYZ (D65) -> L*a*b* -> Delta-E

The worst pixel decides: ``actual = 1 - max(Delta-E) / 100`` must reach the
required perceptual precision. A single badly wrong pixel fails the whole
image even if everything else is identical.

Backends:
    - ``LabDeltaE``: numpy, always available.
    - ``TorchLabDeltaE``: runs on a torch device (``cuda``, ``mps``, ``cpu``);
      only present when torch is installed and the device exists.

``find_metric`` is the capability check; ``None`` means "no perceptual
metric here" and routes ``compare`` to the byte-tolerance comparator.
"""

from __future__ import annotations

import importlib
import logging
import math
from collections.abc import Callable
from types import ModuleType
from typing import Any, Protocol

import numpy as np

from snapcheck.config import CANONICAL_FORMAT, DELTA_E_FORMULAS, PixelFormat
from snapcheck.errors import DimensionMismatch, MetricUnavailable
from snapcheck.image import Image
from snapcheck.pixels import extract
from snapcheck.verdict import Match, Mismatch, Verdict

log = logging.getLogger(__name__)

# sRGB -> XYZ, D65 white
_SRGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ]
)
_D65_WHITE = np.array([0.95047, 1.0, 1.08883])
_LAB_DELTA = 6.0 / 29.0

# CIE94 graphic-arts weights
_CIE94_K1 = 0.045
_CIE94_K2 = 0.015


class DeltaEMetric(Protocol):
    name: str

    def max_delta_e(self, old: np.ndarray, new: np.ndarray) -> float: ...


def srgb_to_linear(rgb: np.ndarray) -> np.ndarray:
    """Exact sRGB transfer function inverse; *rgb* in [0, 1]."""
    return np.where(rgb <= 0.04045, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)


def rgb8_to_lab(pixels: np.ndarray) -> np.ndarray:
    """Convert ``(..., 3+)`` uint8 sRGB pixels to ``(..., 3)`` L*a*b*.

    Extra channels (alpha) are ignored. L is in [0, 100].
    """
    rgb = pixels[..., :3].astype(np.float64) / 255.0
    xyz = srgb_to_linear(rgb) @ _SRGB_TO_XYZ.T
    ratio = xyz / _D65_WHITE
    f = np.where(
        ratio > _LAB_DELTA**3,
        np.cbrt(ratio),
        ratio / (3.0 * _LAB_DELTA**2) + 4.0 / 29.0,
    )
    lightness = 116.0 * f[..., 1] - 16.0
    a = 500.0 * (f[..., 0] - f[..., 1])
    b = 200.0 * (f[..., 1] - f[..., 2])
    return np.stack([lightness, a, b], axis=-1)


def delta_e_cie76(lab1: Any, lab2: Any) -> Any:
    """Euclidean distance in L*a*b*.

    Uses only arithmetic and indexing, so numpy arrays and torch tensors
    both work.
    """
    dl = lab1[..., 0] - lab2[..., 0]
    da = lab1[..., 1] - lab2[..., 1]
    db = lab1[..., 2] - lab2[..., 2]
    return (dl**2 + da**2 + db**2) ** 0.5


def delta_e_cie94(lab1: Any, lab2: Any) -> Any:
    """CIE94 (graphic arts), *lab1* is the reference. numpy or torch."""
    dl = lab1[..., 0] - lab2[..., 0]
    da = lab1[..., 1] - lab2[..., 1]
    db = lab1[..., 2] - lab2[..., 2]
    c1 = (lab1[..., 1] ** 2 + lab1[..., 2] ** 2) ** 0.5
    c2 = (lab2[..., 1] ** 2 + lab2[..., 2] ** 2) ** 0.5
    dc = c1 - c2
    dh_sq = (da**2 + db**2 - dc**2).clip(min=0)
    sc = 1.0 + _CIE94_K1 * c1
    sh = 1.0 + _CIE94_K2 * c1
    return (dl**2 + (dc / sc) ** 2 + dh_sq / sh**2) ** 0.5


def delta_e_ciede2000(lab1: np.ndarray, lab2: np.ndarray) -> np.ndarray:
    """CIEDE2000 (Sharma et al. 2005) with unit weights."""
    l1, a1, b1 = lab1[..., 0], lab1[..., 1], lab1[..., 2]
    l2, a2, b2 = lab2[..., 0], lab2[..., 1], lab2[..., 2]

    c_bar7 = ((np.hypot(a1, b1) + np.hypot(a2, b2)) / 2.0) ** 7
    g = 0.5 * (1.0 - np.sqrt(c_bar7 / (c_bar7 + 25.0**7)))
    a1p = (1.0 + g) * a1
    a2p = (1.0 + g) * a2
    c1p = np.hypot(a1p, b1)
    c2p = np.hypot(a2p, b2)
    h1p = np.degrees(np.arctan2(b1, a1p)) % 360.0
    h2p = np.degrees(np.arctan2(b2, a2p)) % 360.0
    achromatic = c1p * c2p == 0

    dlp = l2 - l1
    dcp = c2p - c1p
    dhp = h2p - h1p
    dhp = np.where(dhp > 180.0, dhp - 360.0, np.where(dhp < -180.0, dhp + 360.0, dhp))
    dhp = np.where(achromatic, 0.0, dhp)
    dhp_big = 2.0 * np.sqrt(c1p * c2p) * np.sin(np.radians(dhp) / 2.0)

    l_bar = (l1 + l2) / 2.0
    c_bar = (c1p + c2p) / 2.0
    h_sum = h1p + h2p
    h_bar = np.where(
        np.abs(h1p - h2p) > 180.0,
        np.where(h_sum < 360.0, (h_sum + 360.0) / 2.0, (h_sum - 360.0) / 2.0),
        h_sum / 2.0,
    )
    h_bar = np.where(achromatic, h_sum, h_bar)

    t = (
        1.0
        - 0.17 * np.cos(np.radians(h_bar - 30.0))
        + 0.24 * np.cos(np.radians(2.0 * h_bar))
        + 0.32 * np.cos(np.radians(3.0 * h_bar + 6.0))
        - 0.20 * np.cos(np.radians(4.0 * h_bar - 63.0))
    )
    d_theta = 30.0 * np.exp(-(((h_bar - 275.0) / 25.0) ** 2))
    c_bar7p = c_bar**7
    rc = 2.0 * np.sqrt(c_bar7p / (c_bar7p + 25.0**7))
    l_sq = (l_bar - 50.0) ** 2
    sl = 1.0 + 0.015 * l_sq / np.sqrt(20.0 + l_sq)
    sc = 1.0 + 0.045 * c_bar
    sh = 1.0 + 0.015 * c_bar * t
    rt = -np.sin(np.radians(2.0 * d_theta)) * rc

    total = (
        (dlp / sl) ** 2
        + (dcp / sc) ** 2
        + (dhp_big / sh) ** 2
        + rt * (dcp / sc) * (dhp_big / sh)
    )
    return np.sqrt(np.maximum(total, 0.0))


_FORMULAS: dict[str, Callable[[Any, Any], Any]] = {
    "cie76": delta_e_cie76,
    "cie94": delta_e_cie94,
    "ciede2000": delta_e_ciede2000,
}


def _check_shapes(old: np.ndarray, new: np.ndarray) -> None:
    if old.shape != new.shape:
        raise DimensionMismatch(f"pixel arrays differ: {old.shape} vs {new.shape}")


class LabDeltaE:
    """Delta-E metric computed with numpy on the CPU."""

    name = "numpy"

    def __init__(self, formula: str = "cie94") -> None:
        if formula not in DELTA_E_FORMULAS:
            raise ValueError(f"unknown Delta-E formula: {formula!r}")
        self.formula = formula

    def distance_map(self, old: np.ndarray, new: np.ndarray) -> np.ndarray:
        """Per-pixel Delta-E, shape ``(height, width)``."""
        _check_shapes(old, new)
        return _FORMULAS[self.formula](rgb8_to_lab(old), rgb8_to_lab(new))

    def max_delta_e(self, old: np.ndarray, new: np.ndarray) -> float:
        distances = self.distance_map(old, new)
        if distances.size == 0:
            raise MetricUnavailable("Delta-E maximum over an empty region")
        return float(distances.max())


class TorchLabDeltaE:
    """Delta-E metric evaluated on a torch device."""

    name = "torch"
    formulas = ("cie76", "cie94")

    def __init__(self, torch: ModuleType, device: str, formula: str = "cie94") -> None:
        if formula not in self.formulas:
            raise ValueError(f"Delta-E formula {formula!r} is not available on torch")
        self._torch = torch
        self.device = torch.device(device)
        self.formula = formula
        self._matrix = torch.tensor(_SRGB_TO_XYZ, dtype=torch.float32, device=self.device)
        self._white = torch.tensor(_D65_WHITE, dtype=torch.float32, device=self.device)

    def _lab(self, pixels: np.ndarray) -> Any:
        torch = self._torch
        rgb = torch.tensor(np.array(pixels[..., :3]), device=self.device).to(torch.float32)
        rgb = rgb / 255.0
        linear = torch.where(rgb <= 0.04045, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)
        ratio = (linear @ self._matrix.T) / self._white
        f = torch.where(
            ratio > _LAB_DELTA**3,
            torch.pow(ratio, 1.0 / 3.0),
            ratio / (3.0 * _LAB_DELTA**2) + 4.0 / 29.0,
        )
        lightness = 116.0 * f[..., 1] - 16.0
        a = 500.0 * (f[..., 0] - f[..., 1])
        b = 200.0 * (f[..., 1] - f[..., 2])
        return torch.stack([lightness, a, b], dim=-1)

    def max_delta_e(self, old: np.ndarray, new: np.ndarray) -> float:
        _check_shapes(old, new)
        try:
            distances = _FORMULAS[self.formula](self._lab(old), self._lab(new))
            return float(distances.max().item())
        except RuntimeError as exc:
            raise MetricUnavailable(f"Delta-E on {self.device} failed: {exc}") from exc


def _try_import(name: str) -> ModuleType | None:
    try:
        return importlib.import_module(name)
    except ImportError:
        return None


def _device_available(torch: ModuleType, device: str) -> bool:
    try:
        dev = torch.device(device)
    except RuntimeError:
        return False
    if dev.type == "cuda":
        return bool(torch.cuda.is_available())
    if dev.type == "mps":
        return bool(torch.backends.mps.is_available())
    return True


def find_metric(
    name: str, *, device: str = "cuda", formula: str = "cie94"
) -> DeltaEMetric | None:
    """Return the named Delta-E backend, or None if it cannot run here.

    Args:
        name: ``"numpy"``, ``"torch"`` or ``"none"``.
        device: Torch device string, used by the torch backend only.
        formula: ``"cie94"``, ``"cie76"`` or ``"ciede2000"``.

    Raises:
        ValueError: On an unknown backend or formula name.
    """
    if name == "none":
        return None
    if name == "numpy":
        return LabDeltaE(formula)
    if name == "torch":
        if formula not in TorchLabDeltaE.formulas:
            log.debug("%s not available on torch; using numpy backend", formula)
            return LabDeltaE(formula)
        torch = _try_import("torch")
        if torch is None:
            log.debug("torch not installed; perceptual metric unavailable")
            return None
        if not _device_available(torch, device):
            log.debug("torch device %s not available; perceptual metric unavailable", device)
            return None
        return TorchLabDeltaE(torch, device, formula)
    raise ValueError(f"unknown metric backend: {name!r}")


def perceptual_compare(
    old: Image,
    new: Image,
    pixel_precision: float,
    perceptual_precision: float,
    metric: DeltaEMetric,
    pixel_format: PixelFormat = CANONICAL_FORMAT,
) -> Verdict:
    """Compare two images by their worst per-pixel Delta-E.

    *pixel_precision* does not enter the verdict: the maximum reduction
    already demands every pixel be within the perceptual bound.

    Raises:
        DecodeError: If either image cannot be extracted.
        MetricUnavailable: If the metric produced no usable maximum.
    """
    a = extract(old, pixel_format).as_array()
    b = extract(new, pixel_format).as_array()
    maximum = metric.max_delta_e(a, b)
    if not math.isfinite(maximum):
        raise MetricUnavailable(f"{metric.name} Delta-E maximum is {maximum}")

    actual = 1 - maximum / 100
    log.debug(
        "max Delta-E %.4f (%s): perceptual %.4f, required %s (pixel precision %s)",
        maximum,
        metric.name,
        actual,
        perceptual_precision,
        pixel_precision,
    )
    if actual >= perceptual_precision:
        return Match()
    return Mismatch(
        f"Actual perceptual precision {actual} is less than required {perceptual_precision}"
    )
