"""Configuration commands.

Provides commands to create, show and locate the hvtools config file.
"""

from pathlib import Path
from typing import Annotated

import tomli_w
import typer
from rich.syntax import Syntax

from hvtools.core.config import (
    ConfigError,
    HvToolsConfig,
    config_to_dict,
    load_config_or_default,
    save_config,
)
from hvtools.core.paths import ensure_config_dir, get_config_path
from hvtools.utils.formatting import console, print_error, print_info, print_success

app = typer.Typer(
    help="Manage hvtools configuration.",
    no_args_is_help=True,
)


@app.command()
def init(
    hosts: Annotated[
        list[str] | None,
        typer.Option(
            "--host",
            "-H",
            help="Default host to scan (repeatable).",
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            help="Overwrite an existing config file.",
        ),
    ] = False,
) -> None:
    """Create a config file with default settings."""
    config_path = get_config_path()
    if config_path.exists() and not force:
        print_error(f"Config already exists: {config_path} (use --force to overwrite)")
        raise typer.Exit(code=1)

    try:
        ensure_config_dir()
        config = HvToolsConfig(hosts=hosts or [])
        saved_path = save_config(config, config_path)
    except (ConfigError, RuntimeError, ValueError) as e:
        print_error(f"Failed to create config: {e}")
        raise typer.Exit(code=1) from e

    print_success(f"Config created: {saved_path}")


@app.command()
def show(
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            help="Config file to show instead of the default one.",
        ),
    ] = None,
) -> None:
    """Show the effective configuration (defaults included)."""
    try:
        config = load_config_or_default(config_path)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    source = config_path or get_config_path()
    if not source.exists():
        print_info(f"No config file at {source}, showing defaults.")
    content = tomli_w.dumps(config_to_dict(config))
    console.print(Syntax(content, "toml", theme="ansi_dark", background_color="default"))


@app.command()
def path() -> None:
    """Print the config file location."""
    typer.echo(str(get_config_path()))
