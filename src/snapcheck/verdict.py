"""Comparison verdicts."""

from __future__ import annotations

from dataclasses import dataclass

from snapcheck.image import Image

ARTIFACT_NAMES = ("reference", "failure", "difference")


@dataclass(frozen=True)
class Match:
    """The candidate is close enough to the reference."""

    @property
    def matched(self) -> bool:
        return True


@dataclass(frozen=True, eq=False)
class Mismatch:
    """The candidate failed the comparison.

    Comparators fill in ``message`` only; ``compare`` attaches the reference,
    the failing candidate (or a placeholder) and the difference image.
    """

    message: str
    reference: Image | None = None
    failure: Image | None = None
    difference: Image | None = None

    @property
    def matched(self) -> bool:
        return False

    def artifacts(self) -> list[tuple[str, Image]]:
        """Return the attached images as ``(name, image)`` pairs."""
        images = (self.reference, self.failure, self.difference)
        return [(name, img) for name, img in zip(ARTIFACT_NAMES, images) if img is not None]


Verdict = Match | Mismatch
