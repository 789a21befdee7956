"""Unit tests for XDG path management."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from hvtools.core.paths import (
    APP_NAME,
    ensure_config_dir,
    get_config_dir,
    get_config_path,
    get_theme_path,
)


class TestGetConfigDir:
    """Tests for get_config_dir function."""

    def test_default_config_dir(self, tmp_path: Path) -> None:
        """get_config_dir returns default path when XDG_CONFIG_HOME not set."""
        with patch.dict(os.environ, {"HOME": str(tmp_path)}, clear=True):
            result = get_config_dir()

        assert result == tmp_path / ".config" / APP_NAME

    def test_respects_xdg_config_home(self, tmp_path: Path) -> None:
        """get_config_dir respects XDG_CONFIG_HOME environment variable."""
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": str(tmp_path)}):
            result = get_config_dir()

        assert result == tmp_path / APP_NAME


class TestFilePaths:
    """Tests for config and theme file locations."""

    def test_config_path(self, isolated_config: Path) -> None:
        """get_config_path returns config.toml in the config dir."""
        assert get_config_path() == isolated_config / "config.toml"

    def test_theme_path(self, isolated_config: Path) -> None:
        """get_theme_path returns theme.toml in the config dir."""
        assert get_theme_path() == isolated_config / "theme.toml"


class TestEnsureConfigDir:
    """Tests for ensure_config_dir function."""

    def test_creates_directory(self, isolated_config: Path) -> None:
        """ensure_config_dir creates the directory."""
        result = ensure_config_dir()

        assert result == isolated_config
        assert result.is_dir()

    def test_permission_error(self) -> None:
        """ensure_config_dir converts permission errors to RuntimeError."""
        with (
            patch.object(Path, "mkdir", side_effect=PermissionError("denied")),
            pytest.raises(RuntimeError, match="Permission denied"),
        ):
            ensure_config_dir()
