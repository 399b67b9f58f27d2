"""CLI entry point for prwarden.

Commands:
  review   — run an incremental AI review on a pull request
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.logging import RichHandler

from prwarden_cli.commands.review import review_cmd


@click.group()
@click.version_option(
    version=importlib.metadata.version("prwarden"),
    prog_name="prwarden",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def main(verbose: bool):
    """Incremental AI code review for GitHub pull requests."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
    )


main.add_command(review_cmd)
