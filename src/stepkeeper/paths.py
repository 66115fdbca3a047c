"""Where stepkeeper finds its config file and keeps its state database.

Locations follow the XDG base directory layout:

- config: $XDG_CONFIG_HOME/stepkeeper/config.yaml (~/.config/stepkeeper)
- state:  $XDG_DATA_HOME/stepkeeper/state.db (~/.local/share/stepkeeper)

$STEPKEEPER_STATE_DIR replaces the state directory outright, so several
trackers (or a test run) can keep separate databases without touching
the XDG variables.
"""

from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "stepkeeper"
CONFIG_NAME = "config.yaml"
DB_NAME = "state.db"

STATE_DIR_ENV_VAR = "STEPKEEPER_STATE_DIR"


def _base_dir(env_var: str, *fallback: str) -> Path:
    """$env_var if set and non-empty, else the fallback under the home directory."""
    value = os.environ.get(env_var)
    if value:
        return Path(value).expanduser()
    return Path.home().joinpath(*fallback)


def get_config_dir() -> Path:
    return _base_dir("XDG_CONFIG_HOME", ".config") / APP_NAME


def get_default_config_path() -> Path:
    """Config file looked up after the explicit, env and local candidates."""
    return get_config_dir() / CONFIG_NAME


def get_default_state_dir() -> Path:
    """Directory holding the state database when the config names none."""
    override = os.environ.get(STATE_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return _base_dir("XDG_DATA_HOME", ".local", "share") / APP_NAME


def get_default_db_path() -> Path:
    return get_default_state_dir() / DB_NAME
