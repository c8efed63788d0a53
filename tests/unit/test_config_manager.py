"""Tests for configuration loading and validation."""

import pytest
import yaml
from pydantic import ValidationError

from route_mocker.core.config.config_manager import ConfigManager
from route_mocker.core.config.settings import MockingConfig


@pytest.fixture
def config_file(temp_test_dir):
    path = temp_test_dir / "config.yaml"
    path.write_text(
        "interception:\n"
        "  base_url: https://app.test\n"
        "  scope_precedence: context\n"
        "fetch:\n"
        "  timeout: 10\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8",
    )
    return path


class TestConfigLoading:
    """Loading YAML configuration files."""

    def test_load_config(self, config_file):
        config = ConfigManager(config_file).load_config()

        assert isinstance(config, MockingConfig)
        assert config.interception.base_url == "https://app.test"
        assert config.interception.scope_precedence == "context"
        assert config.fetch.timeout == 10.0
        assert config.logging.level == "DEBUG"
        assert config.events.history_size == 1000

    def test_load_is_cached_until_reload(self, config_file):
        manager = ConfigManager(config_file)
        first = manager.get_config()

        config_file.write_text("fetch:\n  timeout: 3\n", encoding="utf-8")

        assert manager.get_config() is first
        assert manager.reload_config().fetch.timeout == 3.0

    def test_empty_file_gives_defaults(self, temp_test_dir):
        path = temp_test_dir / "empty.yaml"
        path.write_text("", encoding="utf-8")

        config = ConfigManager(path).load_config()

        assert config.interception.scope_precedence == "page"
        assert config.interception.default_abort_reason == "failed"

    def test_missing_file(self, temp_test_dir):
        manager = ConfigManager(temp_test_dir / "missing.yaml")

        with pytest.raises(FileNotFoundError):
            manager.load_config()
        assert manager.validate_config() is False

    def test_non_mapping_file(self, temp_test_dir):
        path = temp_test_dir / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(yaml.YAMLError):
            ConfigManager(path).load_config()

    def test_env_overrides(self, config_file, monkeypatch):
        monkeypatch.setenv("ROUTEMOCK_FETCH__TIMEOUT", "2.5")
        monkeypatch.setenv("ROUTEMOCK_RECORDING__ENABLED", "yes")
        monkeypatch.setenv("ROUTEMOCK_EVENTS__HISTORY_SIZE", "1")

        config = ConfigManager(config_file).load_config()

        assert config.fetch.timeout == 2.5
        assert config.recording.enabled is True
        assert config.events.history_size == 1

    def test_numeric_env_value_for_string_field(self, config_file, monkeypatch):
        monkeypatch.setenv("ROUTEMOCK_LOGGING__MAX_SIZE", "1048576")
        manager = ConfigManager(config_file)

        assert manager.check_config() == []
        assert manager.get_config().logging.max_size == "1048576"

    @pytest.mark.parametrize("raw, expected", [("on", True), ("Off", False), ("1", True), ("no", False)])
    def test_env_booleans(self, config_file, monkeypatch, raw, expected):
        monkeypatch.setenv("ROUTEMOCK_FETCH__FOLLOW_REDIRECTS", raw)

        config = ConfigManager(config_file).load_config()

        assert config.fetch.follow_redirects is expected

    def test_env_values_are_strings(self, monkeypatch):
        monkeypatch.setenv("ROUTEMOCK_FETCH__MAX_REDIRECTS", "3")
        monkeypatch.setenv("ROUTEMOCK_INTERCEPTION__BASE_URL", "https://app.test")

        overrides = ConfigManager()._env_overrides()

        assert overrides["fetch"]["max_redirects"] == "3"
        assert overrides["interception"]["base_url"] == "https://app.test"


class TestConfigValidation:
    """Schema validation."""

    @pytest.mark.parametrize("content", [
        "interception:\n  scope_precedence: browser\n",
        "interception:\n  base_url: app.test\n",
        "interception:\n  default_abort_reason: exploded\n",
        "fetch:\n  timeout: 0\n",
        "unknown_section:\n  x: 1\n",
    ])
    def test_invalid_values(self, temp_test_dir, content):
        path = temp_test_dir / "invalid.yaml"
        path.write_text(content, encoding="utf-8")
        manager = ConfigManager(path)

        with pytest.raises(ValidationError):
            manager.load_config()
        assert manager.validate_config() is False

    def test_check_config_lists_problems(self, temp_test_dir):
        path = temp_test_dir / "invalid.yaml"
        path.write_text("fetch:\n  timeout: 0\n  max_redirects: 500\n", encoding="utf-8")

        problems = ConfigManager(path).check_config()

        assert len(problems) == 2
        assert problems[0].startswith("fetch.timeout:")
        assert problems[1].startswith("fetch.max_redirects:")

    def test_check_config_missing_file(self, temp_test_dir):
        problems = ConfigManager(temp_test_dir / "missing.yaml").check_config()

        assert problems == [f"file not found: {temp_test_dir / 'missing.yaml'}"]

    def test_abort_reason_is_normalized(self):
        config = MockingConfig(interception={"default_abort_reason": "BLOCKEDBYCLIENT"})

        assert config.interception.default_abort_reason == "blocked-by-client"

    def test_assignment_is_validated(self):
        config = MockingConfig()

        with pytest.raises(ValidationError):
            config.fetch = {"timeout": -1}


class TestDefaultConfig:
    """Generating the default configuration file."""

    def test_create_default_config_round_trips(self, temp_test_dir):
        output = temp_test_dir / "nested" / "default.yaml"
        manager = ConfigManager(output)

        created = manager.create_default_config()

        assert created == output
        data = yaml.safe_load(output.read_text(encoding="utf-8"))
        assert list(data) == ["interception", "fetch", "events", "recording", "logging"]
        assert manager.validate_config() is True
        assert manager.get_config().fetch.timeout == 30.0

    def test_save_config(self, temp_test_dir):
        manager = ConfigManager(temp_test_dir / "saved.yaml")
        config = MockingConfig(interception={"base_url": "https://app.test"}, recording={"enabled": True})

        manager.save_config(config)

        loaded = manager.load_config()
        assert loaded.interception.base_url == "https://app.test"
        assert loaded.recording.enabled is True

    def test_create_default_config_at_other_path(self, temp_test_dir):
        manager = ConfigManager(temp_test_dir / "unused.yaml")

        created = manager.create_default_config(temp_test_dir / "other.yaml")

        assert created.exists()
        assert not (temp_test_dir / "unused.yaml").exists()
