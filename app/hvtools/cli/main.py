"""Main CLI application entry point.

Defines the Typer application, global options and logging setup.
"""

import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from hvtools import __version__
from hvtools.cli.commands import config, disk, orphans
from hvtools.utils.formatting import err_console

# Create main Typer app
app = typer.Typer(
    name="hvtools",
    help="Find orphaned Hyper-V virtual disks and VM files.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"hvtools version {__version__}")
        raise typer.Exit()


def configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Send log records to stderr through Rich.

    WARNING by default, DEBUG with verbose, ERROR with quiet.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    handler = RichHandler(console=err_console, show_path=False, rich_tracebacks=True)
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Only log errors.",
        ),
    ] = False,
) -> None:
    """hvtools - Find orphaned Hyper-V virtual disks and VM files.

    Compares the files below the hosts' VM directories against every
    registered VM, checkpoint and differencing disk chain.
    """
    # Store options in context for subcommands
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    configure_logging(verbose=verbose, quiet=quiet)


# Register commands
app.add_typer(orphans.app, name="orphans")
app.add_typer(disk.app, name="disk")
app.add_typer(config.app, name="config")


if __name__ == "__main__":
    app()
