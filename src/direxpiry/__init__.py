"""direxpiry: Multi-process locking and expiry of versioned cache directories."""

__version__ = "0.1.0"

from direxpiry.config import ExpiryConfig, get_global_config, set_global_config
from direxpiry.exceptions import (
    ConfigError,
    DirExpiryError,
    InvalidVersion,
    IOFailure,
    LockModeConflict,
    LockUnavailable,
)
from direxpiry.lock import (
    CentralLock,
    FileLockBackend,
    LockBackend,
    LockMode,
    MemoryLockBackend,
    VersionLock,
)
from direxpiry.manager import (
    DirectoryManager,
    clear_directories,
    clear_expired,
    flush_cache,
    get_default_manager,
    lock_directory,
    set_default_manager,
    touch,
    touch_directory,
    unlock_directory,
    versioned_directory,
)
from direxpiry.scanner import ExpiryScanner, ScanReport
from direxpiry.stub import AccessStub, read_stub, write_stub
from direxpiry.tracker import AccessTracker, TouchCache
from direxpiry.version import Version

__all__ = [
    "__version__",
    # Operations
    "DirectoryManager",
    "lock_directory",
    "unlock_directory",
    "versioned_directory",
    "touch",
    "touch_directory",
    "clear_expired",
    "clear_directories",
    "flush_cache",
    "get_default_manager",
    "set_default_manager",
    # Components
    "CentralLock",
    "VersionLock",
    "LockMode",
    "LockBackend",
    "FileLockBackend",
    "MemoryLockBackend",
    "AccessTracker",
    "TouchCache",
    "ExpiryScanner",
    "ScanReport",
    "AccessStub",
    "read_stub",
    "write_stub",
    "Version",
    # Configuration
    "ExpiryConfig",
    "get_global_config",
    "set_global_config",
    # Errors
    "DirExpiryError",
    "LockModeConflict",
    "LockUnavailable",
    "IOFailure",
    "InvalidVersion",
    "ConfigError",
]
