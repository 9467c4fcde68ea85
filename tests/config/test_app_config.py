"""Tests for configuration loading."""

import pytest
import yaml

from codemie_sync.config.app import (
    AppConfig,
    SessionSyncConfig,
    apply_cli_overrides,
    apply_env_overrides,
    load_config,
    load_yaml,
)

pytestmark = pytest.mark.unit


class TestSessionSyncConfig:
    def test_defaults(self):
        config = SessionSyncConfig()
        assert config.enabled is True
        assert config.dry_run is False
        assert config.interval_seconds == 120.0
        assert config.batch_size == 50
        assert config.correlation_max_retries == 10

    def test_interval_must_be_at_least_one_second(self):
        with pytest.raises(ValueError):
            SessionSyncConfig(interval_seconds=0.5)

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            SessionSyncConfig(batch_size=0)


class TestLoadYaml:
    def test_missing_file_returns_empty(self, temp_dir):
        assert load_yaml(str(temp_dir / "missing.yaml")) == {}

    def test_rejects_unknown_extension(self, temp_dir):
        path = temp_dir / "config.ini"
        path.write_text("x=1")
        with pytest.raises(ValueError, match="extension"):
            load_yaml(str(path))

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text("session: [unclosed")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_yaml(str(path))

    def test_json_file(self, temp_dir):
        path = temp_dir / "config.json"
        path.write_text('{"session": {"sync": {"dry_run": true}}}')
        assert load_yaml(str(path)) == {"session": {"sync": {"dry_run": True}}}


class TestEnvOverrides:
    def test_interval_is_milliseconds(self):
        result = apply_env_overrides({}, {"CODEMIE_SESSION_SYNC_INTERVAL": "30000"})
        assert result["session"]["sync"]["interval_seconds"] == 30.0

    def test_unparseable_interval_ignored(self):
        assert apply_env_overrides({}, {"CODEMIE_SESSION_SYNC_INTERVAL": "soon"}) == {}

    @pytest.mark.parametrize("value", ["500", "0", "-1000"])
    def test_sub_second_interval_ignored(self, value, caplog):
        with caplog.at_level("WARNING", logger="codemie_sync.config.app"):
            result = apply_env_overrides({}, {"CODEMIE_SESSION_SYNC_INTERVAL": value})

        assert result == {}
        assert "CODEMIE_SESSION_SYNC_INTERVAL" in caplog.text

    @pytest.mark.parametrize(
        "value,expected",
        [("true", True), ("1", True), ("TRUE", True), ("false", False), ("yes", False)],
    )
    def test_enabled_flag(self, value, expected):
        result = apply_env_overrides({}, {"CODEMIE_SESSION_SYNC_ENABLED": value})
        assert result["session"]["sync"]["enabled"] is expected

    def test_env_overrides_yaml_values(self):
        config_dict = {"session": {"sync": {"dry_run": False, "batch_size": 10}}}
        result = apply_env_overrides(config_dict, {"CODEMIE_SESSION_DRY_RUN": "1"})
        assert result["session"]["sync"] == {"dry_run": True, "batch_size": 10}


class TestLoadConfig:
    def test_hierarchy_cli_over_env_over_yaml(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text(
            yaml.safe_dump({"session": {"sync": {"interval_seconds": 60, "dry_run": False}}})
        )

        config = load_config(
            str(path),
            cli_overrides={"session.sync.interval_seconds": 5},
            environ={"CODEMIE_SESSION_SYNC_INTERVAL": "10000", "CODEMIE_SESSION_DRY_RUN": "true"},
        )

        assert config.session.sync.interval_seconds == 5
        assert config.session.sync.dry_run is True

    def test_invalid_values_raise_value_error(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text(yaml.safe_dump({"session": {"sync": {"batch_size": -1}}}))
        with pytest.raises(ValueError, match="Configuration validation failed"):
            load_config(str(path), environ={})

    def test_sub_second_env_interval_keeps_yaml_value(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text(yaml.safe_dump({"session": {"sync": {"interval_seconds": 60}}}))

        config = load_config(str(path), environ={"CODEMIE_SESSION_SYNC_INTERVAL": "500"})

        assert config.session.sync.interval_seconds == 60

    def test_defaults_without_file(self, temp_dir):
        config = load_config(str(temp_dir / "none.yaml"), environ={})
        assert config == AppConfig()


def test_apply_cli_overrides_none_is_noop():
    data = {"logging": {"level": "info"}}
    assert apply_cli_overrides(data, None) is data
