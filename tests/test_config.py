"""Unit tests for expiry configuration."""

import pytest

from direxpiry.config import (
    LIMIT_ENV_VAR,
    ExpiryConfig,
    get_global_config,
    resolve_limit,
    set_global_config,
)
from direxpiry.exceptions import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Make sure the expiry environment variable is unset."""
    monkeypatch.delenv(LIMIT_ENV_VAR, raising=False)
    yield
    set_global_config(None)


class TestExpiryConfig:
    """Test ExpiryConfig construction."""

    def test_defaults(self):
        """Test default configuration values."""
        config = ExpiryConfig()
        assert config.limit_days == 30
        assert config.lock_timeout is None

    def test_string_limit_is_coerced(self):
        """Test that a numeric string limit is accepted."""
        assert ExpiryConfig(limit_days="45").limit_days == 45

    @pytest.mark.parametrize("value", ["ten", 1.5, True, -1, None])
    def test_invalid_limit(self, value):
        """Test that invalid limits raise ConfigError."""
        with pytest.raises(ConfigError):
            ExpiryConfig(limit_days=value)

    def test_invalid_timeout(self):
        """Test that a negative lock timeout is rejected."""
        with pytest.raises(ConfigError):
            ExpiryConfig(lock_timeout=-1)

    def test_from_env(self, monkeypatch):
        """Test loading the limit from the environment."""
        monkeypatch.setenv(LIMIT_ENV_VAR, "100")
        assert ExpiryConfig.from_env().limit_days == 100

    def test_from_env_invalid(self, monkeypatch):
        """Test that a non-integer environment value raises ConfigError."""
        monkeypatch.setenv(LIMIT_ENV_VAR, "a month")
        with pytest.raises(ConfigError):
            ExpiryConfig.from_env()


class TestResolveLimit:
    """Test expiry limit resolution order."""

    def test_explicit_limit_wins(self, monkeypatch):
        """Test that a per-call limit overrides the environment."""
        monkeypatch.setenv(LIMIT_ENV_VAR, "100")
        assert resolve_limit(5) == 5

    def test_explicit_config_overrides_environment(self, monkeypatch):
        """Test that an explicitly passed configuration beats the environment."""
        monkeypatch.setenv(LIMIT_ENV_VAR, "100")
        assert resolve_limit(None, ExpiryConfig(limit_days=7)) == 7

    def test_environment_used_without_config(self, monkeypatch):
        """Test the environment is read at call time when nothing is configured."""
        assert resolve_limit() == 30
        monkeypatch.setenv(LIMIT_ENV_VAR, "100")
        assert resolve_limit() == 100

    def test_global_config_overrides_environment(self, monkeypatch):
        """Test an explicitly set global configuration beats the environment."""
        monkeypatch.setenv(LIMIT_ENV_VAR, "100")
        set_global_config(ExpiryConfig(limit_days=12))
        assert resolve_limit() == 12

    def test_invalid_environment(self, monkeypatch):
        """Test a malformed environment limit raises ConfigError."""
        monkeypatch.setenv(LIMIT_ENV_VAR, "thirty")
        with pytest.raises(ConfigError):
            resolve_limit()

    def test_config_default(self):
        """Test falling back to the configuration."""
        assert resolve_limit(None, ExpiryConfig(limit_days=7)) == 7

    def test_global_default(self):
        """Test falling back to the global configuration."""
        assert resolve_limit() == 30
        set_global_config(ExpiryConfig(limit_days=12))
        assert resolve_limit() == 12

    def test_invalid_explicit_limit(self):
        """Test that an invalid per-call limit raises ConfigError."""
        with pytest.raises(ConfigError):
            resolve_limit("soon")


class TestGlobalConfig:
    """Test global configuration accessors."""

    def test_get_defaults(self):
        """Test the unset global config has default values."""
        assert get_global_config().limit_days == 30

    def test_get_reads_environment(self, monkeypatch):
        """Test the unset global config is built from the environment."""
        monkeypatch.setenv(LIMIT_ENV_VAR, "45")
        assert get_global_config().limit_days == 45
        monkeypatch.setenv(LIMIT_ENV_VAR, "50")
        assert get_global_config().limit_days == 50

    def test_set_replaces(self):
        """Test replacing the global config."""
        config = ExpiryConfig(limit_days=3)
        set_global_config(config)
        assert get_global_config() is config
