"""Exceptions raised by direxpiry."""


class DirExpiryError(Exception):
    """Base exception for versioned directory expiry errors."""

    pass


class LockModeConflict(DirExpiryError):
    """Raised when a lock is requested in a mode incompatible with one already held."""

    pass


class LockUnavailable(DirExpiryError):
    """Raised when a lock could not be acquired before the timeout."""

    pass


class IOFailure(DirExpiryError):
    """Raised when a stub, lock or directory cannot be read, written or deleted."""

    pass


class InvalidVersion(DirExpiryError, ValueError):
    """Raised when a version string cannot be parsed."""

    pass


class ConfigError(DirExpiryError, ValueError):
    """Raised when a configuration value is invalid."""

    pass
