"""snapcheck package."""

from importlib.metadata import PackageNotFoundError, version

from snapcheck.engine import Match, Mismatch, Verdict, compare
from snapcheck.image import Image

__all__ = ["Image", "Match", "Mismatch", "Verdict", "__version__", "compare"]

try:
    __version__ = version("snapcheck")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
