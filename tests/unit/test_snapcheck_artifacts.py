"""Tests for artifacts module."""

from __future__ import annotations

from pathlib import Path

from PIL import Image as PILImage

from snapcheck.artifacts import write_artifacts
from snapcheck.engine import compare
from snapcheck.image import Image
from snapcheck.verdict import Mismatch


def _mismatch() -> Mismatch:
    a = Image(PILImage.new("RGBA", (3, 3), (0, 0, 0, 255)))
    b = Image(PILImage.new("RGBA", (3, 3), (255, 255, 255, 255)))
    verdict = compare(a, b)
    assert isinstance(verdict, Mismatch)
    return verdict


class TestWriteArtifacts:
    def test_writes_three_pngs(self, tmp_path: Path) -> None:
        paths = write_artifacts(_mismatch(), tmp_path / "out")
        assert [p.name for p in paths] == ["reference.png", "failure.png", "difference.png"]
        for p in paths:
            with PILImage.open(p) as img:
                assert img.size == (3, 3)

    def test_prefix(self, tmp_path: Path) -> None:
        paths = write_artifacts(_mismatch(), tmp_path, prefix="button.")
        assert paths[0].name == "button.reference.png"

    def test_difference_content(self, tmp_path: Path) -> None:
        paths = write_artifacts(_mismatch(), tmp_path)
        with PILImage.open(paths[2]) as img:
            assert img.convert("RGB").getpixel((1, 1)) == (255, 255, 255)

    def test_message_only_writes_nothing(self, tmp_path: Path) -> None:
        assert write_artifacts(Mismatch("no images"), tmp_path) == []
