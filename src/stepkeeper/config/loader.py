"""Finding, reading and validating the stepkeeper YAML config.

The config file is resolved from the first of:

1. the ``--config`` option (must exist)
2. $STEPKEEPER_CONFIG
3. ``./stepkeeper.yaml``
4. $XDG_CONFIG_HOME/stepkeeper/config.yaml

String values may reference the environment as ``${VAR}`` or
``${VAR:-fallback}``, which keeps provider tokens out of the file. The
expanded mapping is then validated against the ``Config`` schema.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError

from stepkeeper.config.schema import Config
from stepkeeper.paths import get_default_config_path

if TYPE_CHECKING:
    from collections.abc import Iterator

CONFIG_ENV_VAR = "STEPKEEPER_CONFIG"

LOCAL_CONFIG_NAME = "stepkeeper.yaml"

# ${NAME} or ${NAME:-fallback}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Raised when the config cannot be loaded.

    Attributes:
        path: Config file involved, when known
    """

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class ConfigNotFoundError(ConfigError):
    """Raised when no config file exists at any searched location.

    Attributes:
        searched: Candidate paths, in lookup order
    """

    def __init__(self, message: str, searched: list[Path] | None = None) -> None:
        self.searched = searched or []
        super().__init__(message, self.searched[0] if len(self.searched) == 1 else None)


class ConfigValidationError(ConfigError):
    """Raised when the mapping does not match the Config schema.

    Attributes:
        validation_errors: pydantic error dicts, one per failing field
    """

    def __init__(
        self,
        message: str,
        path: Path | None = None,
        validation_errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message, path)
        self.validation_errors = validation_errors or []


class EnvironmentVariableError(ConfigError):
    """Raised when a ``${VAR}`` reference has no value and no fallback."""

    def __init__(self, var_name: str, path: Path | None = None) -> None:
        super().__init__(f"Environment variable '{var_name}' is not set", path)
        self.var_name = var_name


def expand_env_vars(value: Any, *, strict: bool = True) -> Any:
    """Substitute environment references in every string of ``value``.

    Dicts and lists are walked recursively; other values pass through.

    Args:
        value: Parsed YAML value
        strict: Raise for an unset variable without fallback. When False
                the reference is left in place.

    Raises:
        EnvironmentVariableError: If strict and a variable is unset

    Examples:
        >>> os.environ["HEALTH_TOKEN"] = "secret"
        >>> expand_env_vars({"token": "${HEALTH_TOKEN}", "base": "${HEALTH_URL:-http://localhost}"})
        {'token': 'secret', 'base': 'http://localhost'}
    """
    if isinstance(value, dict):
        return {k: expand_env_vars(v, strict=strict) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v, strict=strict) for v in value]
    if not isinstance(value, str):
        return value

    def substitute(match: re.Match[str]) -> str:
        name, fallback = match.group(1), match.group(2)
        resolved = os.environ.get(name, fallback)
        if resolved is not None:
            return resolved
        if strict:
            raise EnvironmentVariableError(name)
        return match.group(0)

    return ENV_VAR_PATTERN.sub(substitute, value)


def _implicit_candidates() -> Iterator[Path]:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        yield Path(env_path).expanduser().resolve()
    yield Path.cwd() / LOCAL_CONFIG_NAME
    yield get_default_config_path()


def discover_config_path(explicit_path: str | Path | None = None) -> Path:
    """Resolve the config file to load.

    An explicit path is authoritative: if it does not exist the search
    stops there instead of silently falling back to another file.

    Raises:
        ConfigNotFoundError: If no candidate exists
    """
    if explicit_path:
        path = Path(explicit_path).expanduser().resolve()
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise ConfigNotFoundError(msg, [path])
        return path

    searched: list[Path] = []
    for candidate in _implicit_candidates():
        if candidate.exists():
            return candidate
        searched.append(candidate)

    locations = "".join(f"\n  - {p}" for p in searched)
    msg = f"No config file found. Searched locations:{locations}"
    raise ConfigNotFoundError(msg, searched)


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse ``path`` as a YAML mapping; an empty file is an empty mapping.

    Raises:
        ConfigError: If the file is unreadable, not YAML or not a mapping
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        msg = f"Cannot read config file: {e}"
        raise ConfigError(msg, path) from e
    except yaml.YAMLError as e:
        msg = f"Invalid YAML syntax: {e}"
        raise ConfigError(msg, path) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Config file must hold a YAML mapping, got {type(data).__name__}"
        raise ConfigError(msg, path)
    return data


def load_config(path: str | Path | None = None, *, expand_env: bool = True) -> Config:
    """Find, read, expand and validate the config.

    Args:
        path: Explicit config file (the ``--config`` option), or None to search
        expand_env: Substitute ``${VAR}`` references before validating

    Returns:
        Validated Config

    Raises:
        ConfigNotFoundError: If no config file is found
        EnvironmentVariableError: If a referenced variable is unset
        ConfigValidationError: If the config fails schema validation
        ConfigError: If the file cannot be read or parsed

    Example:
        >>> config = load_config("~/.config/stepkeeper/config.yaml")
        >>> config.tracking.save_interval
        10.0
    """
    config_path = discover_config_path(path)
    raw = read_config_file(config_path)

    if expand_env:
        try:
            raw = expand_env_vars(raw)
        except EnvironmentVariableError as e:
            e.path = config_path
            raise

    return validate_config(raw, path=config_path)


def validate_config(raw: dict[str, Any], *, path: Path | None = None) -> Config:
    """Validate a parsed config mapping.

    Raises:
        ConfigValidationError: Listing every failing field as ``a.b: message``
    """
    try:
        return Config.model_validate(raw)
    except ValidationError as e:
        errors = [dict(err) for err in e.errors()]
        lines = "".join(
            f"\n  - {'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in errors
        )
        msg = f"Config validation failed ({len(errors)} error(s)):{lines}"
        raise ConfigValidationError(msg, path=path, validation_errors=errors) from e
