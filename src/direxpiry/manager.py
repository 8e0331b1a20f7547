"""Coordinated access to versioned directories.

:class:`DirectoryManager` ties the lock, tracker and scanner together into
the two operations applications need: use a versioned directory under lock
(clearing expired siblings on release), and record a successful access.

Typical use::

    manager = DirectoryManager()
    with manager.versioned_directory(cache_dir, "1.11.0") as path:
        ...  # read or populate ``path``
        manager.record_access(path)
"""

import logging
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

from direxpiry.config import ExpiryConfig, get_global_config, resolve_limit
from direxpiry.exceptions import DirExpiryError, InvalidVersion
from direxpiry.lock import FileLockBackend, LockBackend, VersionLock, acquire_version
from direxpiry.paths import PathLike, version_dir
from direxpiry.scanner import ExpiryScanner, ScanReport
from direxpiry.tracker import AccessTracker
from direxpiry.version import Version

logger = logging.getLogger(__name__)


class DirectoryManager:
    """Manages locking, access tracking and expiry for versioned directories."""

    def __init__(
        self,
        config: Optional[ExpiryConfig] = None,
        backend: Optional[LockBackend] = None,
        tracker: Optional[AccessTracker] = None,
        today: Callable[[], date] = date.today,
    ):
        """Initialize directory manager.

        Args:
            config: Expiry configuration (uses global if None)
            backend: Lock backend (real lock files if None)
            tracker: Access tracker (a new one sharing ``backend`` if None)
            today: Clock returning the current date
        """
        self._config = config
        self.backend = backend or FileLockBackend(poll_interval=self.config.poll_interval)
        self.tracker = tracker or AccessTracker(
            backend=self.backend, lock_timeout=self.config.lock_timeout, today=today
        )
        self.scanner = ExpiryScanner(config=self._config, backend=self.backend, today=today)

    @property
    def config(self) -> ExpiryConfig:
        """The explicit configuration, or the current global one."""
        return self._config or get_global_config()

    def lock_directory(
        self, path: PathLike, exclusive: bool = False, create: bool = False
    ) -> VersionLock:
        """Lock a versioned directory, creating its base directory if needed.

        Args:
            path: Path to the versioned directory
            exclusive: Whether to lock exclusively (default shared)
            create: Whether to also create the versioned directory

        Returns:
            Acquired VersionLock, to be passed to :meth:`unlock_directory`
        """
        return acquire_version(
            path,
            exclusive=exclusive,
            backend=self.backend,
            timeout=self.config.lock_timeout,
            create=create,
        )

    def unlock_directory(
        self, handle: VersionLock, clear: bool = True, limit: Optional[Any] = None
    ) -> Optional[ScanReport]:
        """Release a versioned directory lock and clear expired siblings.

        The released version is the scan's reference, so it and any newer
        version are protected. No scan runs if the handle is still held by an
        outer acquisition, or if the directory name is not a version.

        Args:
            handle: Handle returned by :meth:`lock_directory`
            clear: Whether to clear expired directories after releasing
            limit: Expiry limit in days for the scan

        Returns:
            ScanReport if a scan ran, otherwise None
        """
        handle.release()
        if not clear or handle.held:
            return None

        try:
            reference = Version.parse(handle.path.name)
        except InvalidVersion:
            logger.warning(
                f"Not clearing {handle.path.parent}: "
                f"{handle.path.name!r} is not a version"
            )
            return None

        return self.scanner.clear_expired(handle.path.parent, reference=reference, limit=limit)

    @contextmanager
    def versioned_directory(
        self,
        base_path: PathLike,
        version: Union[str, Version],
        exclusive: bool = False,
        clear: bool = True,
        limit: Optional[Any] = None,
    ) -> Iterator[Path]:
        """Use a versioned directory under lock.

        The versioned directory is created under the central lock if missing.
        The lock is released on every exit path, after which expired versions
        below ``version`` are cleared unless ``clear`` is False. If the body
        raised, a failing scan is only logged and the body's exception is
        re-raised.

        Yields:
            Path to the versioned directory

        Raises:
            ConfigError: If the expiry limit is invalid (checked before locking)
        """
        path = version_dir(base_path, Version.parse(version))
        if clear:
            limit = resolve_limit(limit, self._config)

        handle = self.lock_directory(path, exclusive=exclusive, create=True)
        try:
            yield path
        except BaseException:
            try:
                self.unlock_directory(handle, clear=clear, limit=limit)
            except DirExpiryError as e:
                logger.warning(f"Failed to release {path} after an error: {e}")
            raise
        else:
            self.unlock_directory(handle, clear=clear, limit=limit)

    def record_access(
        self, path: PathLike, date: Optional[date] = None, force: bool = False
    ) -> bool:
        """Record a successful access to a versioned directory.

        Returns:
            True if the access stub was written
        """
        return self.tracker.touch(path, date=date, force=force)

    def touch_directory(
        self,
        base_path: PathLike,
        version: Union[str, Version],
        date: Optional[date] = None,
        force: bool = False,
    ) -> bool:
        """Record an access to ``base_path/version``."""
        return self.record_access(
            version_dir(base_path, Version.parse(version)), date=date, force=force
        )

    def clear_expired(
        self,
        base_path: PathLike,
        reference: Optional[Union[str, Version]] = None,
        limit: Optional[Any] = None,
    ) -> ScanReport:
        """Delete expired versioned directories under ``base_path``."""
        return self.scanner.clear_expired(base_path, reference=reference, limit=limit)

    def flush(self) -> None:
        """Forget which directories were touched today."""
        self.tracker.flush()


# Process-wide manager used by the module-level functions
_default_manager: Optional[DirectoryManager] = None


def get_default_manager() -> DirectoryManager:
    """Get the process-wide directory manager.

    Returns:
        Default DirectoryManager instance
    """
    global _default_manager
    if _default_manager is None:
        _default_manager = DirectoryManager()
    return _default_manager


def set_default_manager(manager: Optional[DirectoryManager]) -> None:
    """Replace the process-wide directory manager (None to reset)."""
    global _default_manager
    _default_manager = manager


def lock_directory(
    path: PathLike, exclusive: bool = False, create: bool = False
) -> VersionLock:
    """Lock a versioned directory with the default manager."""
    return get_default_manager().lock_directory(path, exclusive=exclusive, create=create)


def unlock_directory(
    handle: VersionLock, clear: bool = True, limit: Optional[Any] = None
) -> Optional[ScanReport]:
    """Unlock a versioned directory with the default manager."""
    return get_default_manager().unlock_directory(handle, clear=clear, limit=limit)


def versioned_directory(
    base_path: PathLike,
    version: Union[str, Version],
    exclusive: bool = False,
    clear: bool = True,
    limit: Optional[Any] = None,
):
    """Use a versioned directory under lock with the default manager."""
    return get_default_manager().versioned_directory(
        base_path, version, exclusive=exclusive, clear=clear, limit=limit
    )


def touch(path: PathLike, date: Optional[date] = None, force: bool = False) -> bool:
    """Record an access to a versioned directory with the default manager."""
    return get_default_manager().record_access(path, date=date, force=force)


def touch_directory(
    base_path: PathLike,
    version: Union[str, Version],
    date: Optional[date] = None,
    force: bool = False,
) -> bool:
    """Record an access to ``base_path/version`` with the default manager."""
    return get_default_manager().touch_directory(base_path, version, date=date, force=force)


def clear_expired(
    base_path: PathLike,
    reference: Optional[Union[str, Version]] = None,
    limit: Optional[Any] = None,
) -> ScanReport:
    """Delete expired versioned directories with the default manager."""
    return get_default_manager().clear_expired(base_path, reference=reference, limit=limit)


clear_directories = clear_expired


def flush_cache() -> None:
    """Clear the default manager's touch cache."""
    get_default_manager().flush()
