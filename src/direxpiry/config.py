"""Expiry configuration management."""

import os
from dataclasses import dataclass
from typing import Any, Optional

from direxpiry.exceptions import ConfigError

LIMIT_ENV_VAR = "BIOC_DIR_EXPIRY_LIMIT"
DEFAULT_LIMIT_DAYS = 30


@dataclass
class ExpiryConfig:
    """Configuration for versioned directory expiry.

    Attributes:
        limit_days: Maximum number of days since last access before an
            unprotected versioned directory is eligible for deletion
        lock_timeout: Seconds to wait for a lock before giving up
            (None = wait forever)
        poll_interval: Seconds between attempts while waiting on a lock
            with a timeout
    """

    limit_days: int = DEFAULT_LIMIT_DAYS
    lock_timeout: Optional[float] = None
    poll_interval: float = 0.05

    def __post_init__(self):
        """Validate the expiry limit and lock settings."""
        self.limit_days = _coerce_limit(self.limit_days)
        if self.lock_timeout is not None and self.lock_timeout < 0:
            raise ConfigError(f"lock_timeout must be non-negative, got {self.lock_timeout}")
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be positive, got {self.poll_interval}")

    @classmethod
    def from_env(cls) -> "ExpiryConfig":
        """Create configuration from environment variables.

        Environment variables:
            BIOC_DIR_EXPIRY_LIMIT: Expiry limit in days

        Returns:
            ExpiryConfig instance

        Raises:
            ConfigError: If the environment variable is not an integer
        """
        config = cls()

        if os.getenv(LIMIT_ENV_VAR):
            config.limit_days = _coerce_limit(os.getenv(LIMIT_ENV_VAR))

        return config


def _coerce_limit(value: Any) -> int:
    """Convert a user-supplied limit into a non-negative number of days."""
    if isinstance(value, bool):
        raise ConfigError(f"Expiry limit must be an integer, got {value!r}")

    if isinstance(value, int):
        limit = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ConfigError(f"Expiry limit must be an integer, got {value!r}")
        limit = int(value)
    elif isinstance(value, str):
        try:
            limit = int(value.strip())
        except ValueError as e:
            raise ConfigError(f"Expiry limit must be an integer, got {value!r}") from e
    else:
        raise ConfigError(f"Expiry limit must be an integer, got {type(value).__name__}")

    if limit < 0:
        raise ConfigError(f"Expiry limit must be non-negative, got {limit}")
    return limit


def resolve_limit(
    limit: Optional[Any] = None, config: Optional[ExpiryConfig] = None
) -> int:
    """Work out the expiry limit for a scan.

    The per-call ``limit`` wins, then ``config``, then the global
    configuration. Unless one was set with :func:`set_global_config`, the
    global configuration is read from the environment at call time.

    Args:
        limit: Explicit limit in days
        config: Configuration providing the fallback (global if None)

    Returns:
        Expiry limit in days

    Raises:
        ConfigError: If the chosen value is not a non-negative integer
    """
    if limit is not None:
        return _coerce_limit(limit)

    return (config or get_global_config()).limit_days


# Global expiry configuration instance
_global_config: Optional[ExpiryConfig] = None


def get_global_config() -> ExpiryConfig:
    """Get global expiry configuration.

    If none was set, a fresh configuration is built from the environment on
    every call, so changes to the environment take effect immediately.

    Returns:
        Global ExpiryConfig instance

    Raises:
        ConfigError: If the environment holds an invalid expiry limit
    """
    if _global_config is None:
        return ExpiryConfig.from_env()
    return _global_config


def set_global_config(config: Optional[ExpiryConfig]) -> None:
    """Set global expiry configuration.

    Args:
        config: ExpiryConfig instance to use globally, or None to reset
    """
    global _global_config
    _global_config = config
