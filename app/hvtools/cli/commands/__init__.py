"""CLI commands for hvtools.

This package contains all subcommand implementations.
"""

from hvtools.cli.commands import config, disk, orphans

__all__ = ["config", "disk", "orphans"]
