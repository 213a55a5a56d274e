"""Canonical pixel format and environment-driven settings."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

log = logging.getLogger(__name__)

METRIC_NAMES: frozenset[str] = frozenset({"numpy", "torch", "none"})
DELTA_E_FORMULAS: frozenset[str] = frozenset({"cie76", "cie94", "ciede2000"})


@dataclass(frozen=True)
class PixelFormat:
    """Layout every image is redrawn into before byte comparison."""

    color_space: str = "sRGB"
    bits_per_component: int = 8
    bytes_per_pixel: int = 4
    alpha: str = "premultiplied-last"


CANONICAL_FORMAT = PixelFormat()


@dataclass(frozen=True)
class Settings:
    metric: str = "numpy"
    device: str = "cuda"
    formula: str = "cie94"
    scale: float = 1.0


def _choice(env: Mapping[str, str], key: str, allowed: frozenset[str], default: str) -> str:
    value = env.get(key)
    if not value:
        return default
    value = value.strip().lower()
    if value not in allowed:
        log.warning("ignoring %s=%r; expected one of %s", key, value, ", ".join(sorted(allowed)))
        return default
    return value


def _scale(env: Mapping[str, str], default: float) -> float:
    raw = env.get("SNAPCHECK_SCALE")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning("ignoring SNAPCHECK_SCALE=%r; not a number", raw)
        return default
    if value <= 0:
        log.warning("ignoring SNAPCHECK_SCALE=%r; must be positive", raw)
        return default
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from ``SNAPCHECK_*`` environment variables.

    Invalid values are logged and replaced by their defaults.
    """
    env = os.environ if environ is None else environ
    defaults = Settings()
    return Settings(
        metric=_choice(env, "SNAPCHECK_METRIC", METRIC_NAMES, defaults.metric),
        device=env.get("SNAPCHECK_DEVICE") or defaults.device,
        formula=_choice(env, "SNAPCHECK_DELTA_E", DELTA_E_FORMULAS, defaults.formula),
        scale=_scale(env, defaults.scale),
    )
