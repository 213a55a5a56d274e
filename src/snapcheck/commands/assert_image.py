"""snapcheck assert-image command -- reference vs candidate comparison."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click

from snapcheck.artifacts import write_artifacts
from snapcheck.config import load_settings
from snapcheck.engine import compare
from snapcheck.errors import DecodeError
from snapcheck.image import load
from snapcheck.verdict import Mismatch, Verdict


def _err_exit(msg: str, use_json: bool) -> None:
    """Print error (JSON or plain text) and exit(2)."""
    if use_json:
        click.echo(json.dumps({"error": {"message": msg}}), err=True)
    else:
        click.echo(f"error: {msg}", err=True)
    sys.exit(2)


def _json_output(
    verdict: Verdict,
    pixel_precision: float,
    perceptual_precision: float,
    written: list[Path],
) -> str:
    """Format a verdict as JSON string."""
    data: dict[str, Any] = {
        "matched": verdict.matched,
        "message": verdict.message if isinstance(verdict, Mismatch) else None,
        "pixel_precision": pixel_precision,
        "perceptual_precision": perceptual_precision,
        "artifacts": [str(p) for p in written],
    }
    return json.dumps(data)


@click.command("assert-image")
@click.argument("reference", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("candidate", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--precision",
    "pixel_precision",
    default=1.0,
    type=click.FloatRange(0.0, 1.0),
    help="Fraction of bytes that must match.",
)
@click.option(
    "--perceptual-precision",
    default=1.0,
    type=click.FloatRange(0.0, 1.0),
    help="Per-pixel perceptual closeness required (1 - max Delta-E / 100).",
)
@click.option(
    "--scale",
    default=None,
    type=click.FloatRange(min=0.0, min_open=True),
    help="Scale of both images (default: $SNAPCHECK_SCALE or 1).",
)
@click.option(
    "--metric",
    default="auto",
    type=click.Choice(["auto", "numpy", "torch", "none"]),
    help="Delta-E backend (default: $SNAPCHECK_METRIC or numpy).",
)
@click.option(
    "--artifacts-dir",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Write reference/failure/difference PNGs here on mismatch.",
)
@click.option("--json", "use_json", is_flag=True, help="JSON output.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging to stderr.")
def assert_image_cmd(
    reference: Path,
    candidate: Path,
    pixel_precision: float,
    perceptual_precision: float,
    scale: float | None,
    metric: str,
    artifacts_dir: Path | None,
    use_json: bool,
    verbose: bool,
) -> None:
    """Compare CANDIDATE against REFERENCE.

    Exit 0 if the images match, exit 1 if they differ,
    exit 2 on error (unreadable file, invalid option).
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    if scale is None:
        scale = load_settings().scale

    try:
        verdict = compare(
            load(reference, scale),
            load(candidate, scale),
            pixel_precision,
            perceptual_precision,
            metric=metric,
        )
    except (DecodeError, ValueError, OSError) as exc:
        _err_exit(str(exc), use_json)
        return

    written: list[Path] = []
    if isinstance(verdict, Mismatch) and artifacts_dir is not None:
        try:
            written = write_artifacts(verdict, artifacts_dir, prefix=f"{candidate.stem}.")
        except OSError as exc:
            _err_exit(f"cannot write artifacts: {exc}", use_json)
            return

    if use_json:
        click.echo(_json_output(verdict, pixel_precision, perceptual_precision, written))
    elif isinstance(verdict, Mismatch):
        click.echo(f"mismatch: {verdict.message}")
        for path in written:
            click.echo(f"  {path}")
    else:
        click.echo("match")

    sys.exit(0 if verdict.matched else 1)
