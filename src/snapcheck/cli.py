from __future__ import annotations

import click

from snapcheck import __version__
from snapcheck.commands.assert_image import assert_image_cmd


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="snapcheck")
def main() -> None:
    """snapcheck: visual-regression image comparison."""


main.add_command(assert_image_cmd, name="assert-image")


if __name__ == "__main__":
    main()
