"""CLI package for hvtools.

This package contains the Typer application and all subcommands.
"""

from hvtools.cli.main import app

__all__ = ["app"]
