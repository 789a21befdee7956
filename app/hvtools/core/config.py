r"""hvtools configuration and settings.

Configuration is stored in ~/.config/hvtools/config.toml. Every key is
optional; a missing file means defaults.

Example:
    hosts = ["hv01", "hv02"]
    max_workers = 8
    command_timeout_seconds = 300
    excluded_directories = ['?:\tools\templates*']
"""

import os
import tomllib
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from hvtools.core.paths import get_config_path

DEFAULT_MAX_WORKERS = 8
DEFAULT_COMMAND_TIMEOUT = 300
DEFAULT_POWERSHELL = "powershell.exe"


class HvToolsConfig(BaseModel):
    """Settings for host queries and orphan scans.

    Attributes:
        hosts: Hosts to scan when none are given on the command line.
        max_workers: Upper bound for concurrent host and path tasks.
        command_timeout_seconds: Timeout for a single PowerShell invocation.
        timeout_seconds: Overall timeout for a scan (None = no limit).
        powershell: PowerShell executable used for hypervisor queries.
        excluded_directories: Extra glob patterns of directories whose
            GUID-named files are never reported.
    """

    model_config = ConfigDict(extra="forbid")

    hosts: Annotated[
        list[str],
        Field(default_factory=list, description="Default hosts to scan"),
    ]
    max_workers: Annotated[
        int,
        Field(ge=1, le=64, description="Concurrent host/path tasks (1-64)"),
    ] = DEFAULT_MAX_WORKERS
    command_timeout_seconds: Annotated[
        int,
        Field(ge=10, le=3600, description="PowerShell command timeout (10-3600)"),
    ] = DEFAULT_COMMAND_TIMEOUT
    timeout_seconds: Annotated[
        int | None,
        Field(ge=1, description="Overall scan timeout (None = unlimited)"),
    ] = None
    powershell: Annotated[
        str,
        Field(min_length=1, description="PowerShell executable"),
    ] = DEFAULT_POWERSHELL
    excluded_directories: Annotated[
        list[str],
        Field(default_factory=list, description="Extra excluded directory patterns"),
    ]

    @field_validator("hosts")
    @classmethod
    def validate_hosts(cls, v: list[str]) -> list[str]:
        """Strip host names and reject blanks."""
        hosts = [h.strip() for h in v]
        if any(not h for h in hosts):
            msg = "Host names cannot be empty"
            raise ValueError(msg)
        return hosts


class ConfigError(Exception):
    """Base exception for configuration errors."""


class ConfigNotFoundError(ConfigError):
    """Raised when the config file is not found."""


class ConfigParseError(ConfigError):
    """Raised when the config file cannot be parsed."""


def load_config(path: Path | None = None) -> HvToolsConfig:
    """Load configuration from a TOML file.

    Args:
        path: Path to the config file. If None, uses the default config path.

    Returns:
        Validated HvToolsConfig object.

    Raises:
        ConfigNotFoundError: If the config file doesn't exist.
        ConfigParseError: If the TOML syntax is invalid.
        ConfigError: If the content doesn't match the schema.
    """
    config_path = path or get_config_path()

    if not config_path.exists():
        raise ConfigNotFoundError(f"Config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigParseError(f"Invalid TOML syntax: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config: {e}") from e

    try:
        return HvToolsConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config content: {e}") from e


def load_config_or_default(path: Path | None = None) -> HvToolsConfig:
    """Load configuration, falling back to defaults if the file is missing.

    An explicitly given path must exist.

    Raises:
        ConfigError: If the file exists but is invalid, or if an explicit
            path does not exist.
    """
    try:
        return load_config(path)
    except ConfigNotFoundError:
        if path is not None:
            raise
        return HvToolsConfig()


def save_config(config: HvToolsConfig, path: Path | None = None) -> Path:
    """Save configuration to a TOML file.

    The file is written atomically by first writing to a temporary file
    and then using os.replace() for atomic rename.

    Args:
        config: The HvToolsConfig object to save.
        path: Path to save the config. If None, uses the default config path.

    Returns:
        Path where the config was saved.

    Raises:
        ConfigError: If the file cannot be written.
    """
    config_path = path or get_config_path()

    tmp_path: Path | None = None
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile(
            mode="wb",
            dir=config_path.parent,
            delete=False,
            suffix=".tmp",
        ) as f:
            tmp_path = Path(f.name)
            tomli_w.dump(config_to_dict(config), f)
        os.replace(str(tmp_path), str(config_path))
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise ConfigError(f"Failed to write config: {e}") from e

    return config_path


def config_to_dict(config: HvToolsConfig) -> dict[str, object]:
    """Convert HvToolsConfig to a dictionary for TOML serialization.

    None values are left out because TOML has no null.
    """
    return config.model_dump(exclude_none=True)
