"""Tests for config and state path resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stepkeeper import paths
from stepkeeper.config import StateConfig

if TYPE_CHECKING:
    from pathlib import Path

    import pytest


def test_xdg_data_home(monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
    monkeypatch.delenv("STEPKEEPER_STATE_DIR", raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(temp_dir))

    assert paths.get_default_db_path() == temp_dir / "stepkeeper" / "state.db"


def test_home_fallbacks(monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
    monkeypatch.setenv("HOME", str(temp_dir))
    for var in ("XDG_CONFIG_HOME", "XDG_DATA_HOME", "STEPKEEPER_STATE_DIR"):
        monkeypatch.delenv(var, raising=False)

    assert paths.get_default_config_path() == temp_dir / ".config" / "stepkeeper" / "config.yaml"
    assert paths.get_default_state_dir() == temp_dir / ".local" / "share" / "stepkeeper"


def test_empty_xdg_variable_is_ignored(monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
    monkeypatch.setenv("HOME", str(temp_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", "")

    assert paths.get_config_dir() == temp_dir / ".config" / "stepkeeper"


def test_state_dir_override(monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
    monkeypatch.setenv("XDG_DATA_HOME", str(temp_dir / "xdg"))
    monkeypatch.setenv("STEPKEEPER_STATE_DIR", str(temp_dir / "tracker-a"))

    assert paths.get_default_db_path() == temp_dir / "tracker-a" / "state.db"


def test_state_config_defaults_to_data_dir(monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
    monkeypatch.delenv("STEPKEEPER_STATE_DIR", raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(temp_dir))

    assert StateConfig().get_directory() == temp_dir / "stepkeeper"
    assert StateConfig(directory=str(temp_dir / "custom")).get_directory() == temp_dir / "custom"
