"""Write mismatch artifacts to disk for inspection."""

from __future__ import annotations

import logging
from pathlib import Path

from snapcheck.image import save
from snapcheck.verdict import Mismatch

log = logging.getLogger(__name__)


def write_artifacts(mismatch: Mismatch, directory: Path, *, prefix: str = "") -> list[Path]:
    """Save each attached image as ``<prefix><name>.png`` under *directory*.

    Returns:
        Paths written, in reference, failure, difference order.
    """
    directory.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for name, image in mismatch.artifacts():
        path = save(image, directory / f"{prefix}{name}.png")
        log.debug("wrote %s artifact: %s", name, path)
        written.append(path)
    return written
