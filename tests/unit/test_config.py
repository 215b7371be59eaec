"""Unit tests for configuration management."""

from pathlib import Path

import pytest
import yaml

from compoundefi.utils.config import (
    Config,
    load_config,
    load_optimizer_config,
    validate_config,
)
from compoundefi.utils.exceptions import ConfigurationError


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a minimal engine config file."""
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.dump(
            {
                "execution": {"base_unit_scale": 100000000, "inter_operation_delay_seconds": 0.5},
                "optimizer": {"interval_hours": 12, "poll_interval_seconds": 30},
                "storage": {"backend": "memory"},
            }
        )
    )
    return path


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove engine environment overrides."""
    for name in (
        "COMPOUNDEFI_STORE_PATH",
        "COMPOUNDEFI_STORE_BACKEND",
        "COMPOUNDEFI_LOG_LEVEL",
        "COMPOUNDEFI_BASE_UNIT_SCALE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestConfig:
    """Test cases for Config class."""

    def test_from_file_valid_yaml(self, config_file: Path) -> None:
        """Test loading valid YAML configuration file."""
        config = Config.from_file(config_file)
        assert config.get("optimizer.interval_hours") == 12
        assert config.get("storage.backend") == "memory"

    def test_from_file_empty_yaml(self, tmp_path: Path) -> None:
        """Test loading empty YAML file."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        assert Config.from_file(config_file).to_dict() == {}

    def test_from_file_not_found(self) -> None:
        """Test loading non-existent file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            Config.from_file("nonexistent.yaml")

    def test_get_default_value(self) -> None:
        """Test getting default value for missing key."""
        config = Config({"existing": "value"})

        assert config.get("missing.key", "default") == "default"
        assert config.get("existing", "default") == "value"

    def test_get_through_non_dict(self) -> None:
        """Test dotted lookup through a scalar returns the default."""
        config = Config({"storage": "json"})
        assert config.get("storage.backend", "fallback") == "fallback"

    def test_set_creates_sections(self) -> None:
        """Test set creates intermediate sections."""
        config = Config({})
        config.set("storage.path", "/tmp/state.json")
        assert config.get("storage.path") == "/tmp/state.json"

    def test_getitem_missing_raises(self) -> None:
        """Test bracket access raises KeyError for missing keys."""
        config = Config({"a": {"b": 1}})
        assert config["a.b"] == 1
        with pytest.raises(KeyError):
            config["a.c"]


class TestLoadConfig:
    """Test cases for load_config helpers."""

    def test_load_default_config(self) -> None:
        """Test the bundled default config loads with engine defaults."""
        config = load_config()
        assert config.get("execution.base_unit_scale") == 100000000
        assert config.get("optimizer.interval_hours") == 24
        assert config.get("optimizer.history_limit") == 10
        assert config.get("optimizer.enforce_drift_threshold") is False

    def test_load_optimizer_config_file(self, config_file: Path, clean_env) -> None:
        """Test loading an explicit config file."""
        config = load_optimizer_config(config_file)
        assert config.get("optimizer.interval_hours") == 12
        assert config.get("execution.inter_operation_delay_seconds") == 0.5

    def test_env_overrides(self, config_file: Path, clean_env, monkeypatch) -> None:
        """Test environment variables override YAML values, typed."""
        monkeypatch.setenv("COMPOUNDEFI_BASE_UNIT_SCALE", "1000000")
        monkeypatch.setenv("COMPOUNDEFI_STORE_BACKEND", "sqlite")

        config = load_optimizer_config(config_file)

        assert config.get("execution.base_unit_scale") == 1000000
        assert config.get("storage.backend") == "sqlite"

    def test_env_file(self, config_file: Path, clean_env, tmp_path: Path, monkeypatch) -> None:
        """Test overrides read from a .env file."""
        # Registers the variable with monkeypatch so teardown removes it
        monkeypatch.setenv("COMPOUNDEFI_STORE_PATH", "unset")
        monkeypatch.delenv("COMPOUNDEFI_STORE_PATH")
        env_file = tmp_path / ".env"
        env_file.write_text("COMPOUNDEFI_STORE_PATH=/tmp/from_env.json\n")

        config = load_optimizer_config(config_file, env_file)

        assert config.get("storage.path") == "/tmp/from_env.json"


class TestValidateConfig:
    """Test cases for validate_config."""

    def test_defaults_are_valid(self) -> None:
        """Test an empty config validates using defaults."""
        validate_config(Config({}))

    @pytest.mark.parametrize(
        "key",
        [
            "execution.base_unit_scale",
            "optimizer.interval_hours",
            "optimizer.poll_interval_seconds",
            "optimizer.history_limit",
        ],
    )
    def test_non_positive_rejected(self, key: str) -> None:
        """Test values that must be positive reject zero."""
        config = Config({})
        config.set(key, 0)
        with pytest.raises(ConfigurationError, match="must be positive"):
            validate_config(config)

    def test_negative_threshold_rejected(self) -> None:
        """Test negative drift threshold is rejected."""
        config = Config({"optimizer": {"drift_threshold_percent": -1}})
        with pytest.raises(ConfigurationError, match="must be non-negative"):
            validate_config(config)

    def test_non_numeric_rejected(self) -> None:
        """Test non-numeric values are rejected."""
        config = Config({"optimizer": {"interval_hours": "daily"}})
        with pytest.raises(ConfigurationError, match="must be numeric"):
            validate_config(config)

    def test_unknown_backend_rejected(self) -> None:
        """Test unknown storage backend is rejected."""
        config = Config({"storage": {"backend": "redis"}})
        with pytest.raises(ConfigurationError, match="storage.backend"):
            validate_config(config)
