"""Tests for configuration loading and validation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from stepkeeper.config import Config, TrackingConfig, load_config, validate_config
from stepkeeper.config.loader import (
    ConfigError,
    ConfigNotFoundError,
    ConfigValidationError,
    EnvironmentVariableError,
    discover_config_path,
    expand_env_vars,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


class TestExpandEnvVars:
    def test_nested_values_are_expanded(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HEALTH_TOKEN", "abc123")

        result = expand_env_vars({"provider": {"token": "${HEALTH_TOKEN}"}, "list": ["x-${HEALTH_TOKEN}", 5]})

        assert result == {"provider": {"token": "abc123"}, "list": ["x-abc123", 5]}

    def test_missing_variable_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MISSING_TOKEN", raising=False)

        with pytest.raises(EnvironmentVariableError) as exc_info:
            expand_env_vars("${MISSING_TOKEN}")
        assert exc_info.value.var_name == "MISSING_TOKEN"

    def test_non_strict_leaves_reference(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MISSING_TOKEN", raising=False)

        assert expand_env_vars("${MISSING_TOKEN}", strict=False) == "${MISSING_TOKEN}"

    def test_fallback_used_when_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("HEALTH_URL", raising=False)

        assert expand_env_vars("${HEALTH_URL:-http://localhost:8080}") == "http://localhost:8080"

    def test_set_variable_overrides_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HEALTH_URL", "https://health.example.com")

        assert expand_env_vars("${HEALTH_URL:-http://localhost}") == "https://health.example.com"


class TestLoadConfig:
    def test_minimal_config_uses_defaults(
        self,
        minimal_config: dict[str, Any],
        write_config: Callable[..., Path],
    ) -> None:
        config = load_config(write_config(minimal_config))

        assert config.provider is None
        assert config.sensor is not None
        assert config.tracking.save_interval == 10
        assert config.tracking.staleness_hours == 12
        assert config.notifications.enabled
        assert config.has_sources()

    def test_sample_config(
        self,
        sample_config: dict[str, Any],
        write_config: Callable[..., Path],
        monkeypatch: pytest.MonkeyPatch,
        temp_dir: Path,
    ) -> None:
        monkeypatch.setenv("TEST_PROVIDER_TOKEN", "tok-123")

        config = load_config(write_config(sample_config))

        assert config.provider is not None
        assert config.provider.token == "tok-123"
        assert config.provider.base_url == "https://health.example.com"
        assert config.tracking.save_interval == 5
        assert config.state.get_directory() == temp_dir / "state"

    def test_missing_env_var_reports_path(
        self,
        sample_config: dict[str, Any],
        write_config: Callable[..., Path],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.delenv("TEST_PROVIDER_TOKEN", raising=False)
        path = write_config(sample_config)

        with pytest.raises(EnvironmentVariableError) as exc_info:
            load_config(path)
        assert exc_info.value.path == path

    def test_unexpanded_config_keeps_reference(
        self,
        sample_config: dict[str, Any],
        write_config: Callable[..., Path],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.delenv("TEST_PROVIDER_TOKEN", raising=False)

        config = load_config(write_config(sample_config), expand_env=False)

        assert config.provider is not None
        assert config.provider.token == "${TEST_PROVIDER_TOKEN}"

    def test_invalid_yaml(self, temp_dir: Path) -> None:
        path = temp_dir / "config.yaml"
        path.write_text("version: [1\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping_yaml(self, temp_dir: Path) -> None:
        path = temp_dir / "config.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_explicit_missing_path(self, temp_dir: Path) -> None:
        with pytest.raises(ConfigNotFoundError):
            load_config(temp_dir / "nope.yaml")


class TestValidation:
    def test_unknown_key_is_rejected(self, minimal_config: dict[str, Any]) -> None:
        minimal_config["tracking"] = {"save_intreval": 5}

        with pytest.raises(ConfigValidationError) as exc_info:
            validate_config(minimal_config)
        assert "tracking.save_intreval" in str(exc_info.value)

    def test_version_must_be_one(self, minimal_config: dict[str, Any]) -> None:
        minimal_config["version"] = 2

        with pytest.raises(ConfigValidationError):
            validate_config(minimal_config)

    @pytest.mark.parametrize("base_url", ["health.example.com", "ftp://health.example.com"])
    def test_provider_url_needs_http_scheme(self, base_url: str) -> None:
        with pytest.raises(ConfigValidationError, match="base_url"):
            validate_config({"version": 1, "provider": {"base_url": base_url}})

    @pytest.mark.parametrize(
        "tracking",
        [
            {"save_interval": 0},
            {"staleness_hours": -1},
            {"io_timeout": 1000},
            {"reset_tolerance": -5},
        ],
    )
    def test_out_of_range_tracking_values(self, tracking: dict[str, Any]) -> None:
        with pytest.raises(ConfigValidationError):
            validate_config({"version": 1, "tracking": tracking})

    def test_retry_cap_must_cover_step(self) -> None:
        with pytest.raises(ValueError, match="retry_max"):
            TrackingConfig(retry_step=5, retry_max=1)

    def test_no_sources(self) -> None:
        config = validate_config({"version": 1})

        assert isinstance(config, Config)
        assert not config.has_sources()

    def test_validation_errors_are_collected(self) -> None:
        with pytest.raises(ConfigValidationError) as exc_info:
            validate_config({"version": 1, "tracking": {"save_interval": 0, "refresh_interval": 0}})
        assert len(exc_info.value.validation_errors) == 2


class TestDiscovery:
    def test_env_var_takes_priority(
        self,
        minimal_config: dict[str, Any],
        write_config: Callable[..., Path],
        monkeypatch: pytest.MonkeyPatch,
        temp_dir: Path,
    ) -> None:
        path = write_config(minimal_config, "from-env.yaml")
        (temp_dir / "stepkeeper.yaml").write_text("version: 1\n")
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("STEPKEEPER_CONFIG", str(path))

        assert discover_config_path() == path.resolve()

    def test_local_file(
        self,
        minimal_config: dict[str, Any],
        write_config: Callable[..., Path],
        monkeypatch: pytest.MonkeyPatch,
        temp_dir: Path,
    ) -> None:
        write_config(minimal_config, "stepkeeper.yaml")
        monkeypatch.chdir(temp_dir)
        monkeypatch.delenv("STEPKEEPER_CONFIG", raising=False)

        assert discover_config_path().resolve() == (temp_dir / "stepkeeper.yaml").resolve()

    def test_xdg_config_home(
        self,
        monkeypatch: pytest.MonkeyPatch,
        temp_dir: Path,
    ) -> None:
        config_dir = temp_dir / "xdg" / "stepkeeper"
        config_dir.mkdir(parents=True)
        (config_dir / "config.yaml").write_text("version: 1\n")
        workdir = temp_dir / "work"
        workdir.mkdir()
        monkeypatch.chdir(workdir)
        monkeypatch.delenv("STEPKEEPER_CONFIG", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "xdg"))

        assert discover_config_path() == config_dir / "config.yaml"

    def test_nothing_found_lists_locations(
        self, monkeypatch: pytest.MonkeyPatch, temp_dir: Path
    ) -> None:
        monkeypatch.chdir(temp_dir)
        monkeypatch.delenv("STEPKEEPER_CONFIG", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "xdg"))
        monkeypatch.setenv("HOME", str(temp_dir / "home"))

        with pytest.raises(ConfigNotFoundError, match="Searched locations"):
            discover_config_path()

    def test_searched_locations_are_kept_in_order(
        self, monkeypatch: pytest.MonkeyPatch, temp_dir: Path
    ) -> None:
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("STEPKEEPER_CONFIG", str(temp_dir / "env.yaml"))
        monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "xdg"))

        with pytest.raises(ConfigNotFoundError) as exc_info:
            discover_config_path()

        assert [p.name for p in exc_info.value.searched] == ["env.yaml", "stepkeeper.yaml", "config.yaml"]
