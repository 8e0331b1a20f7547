"""Advisory file locks for versioned directories.

Two kinds of lock guard a base directory:

- the central lock (``central-00LOCK``), always exclusive, serializing
  structural operations such as creating the base directory and deleting
  expired versions;
- one version lock per versioned directory (``<version>-00LOCK``), either
  shared (readers) or exclusive (writers and deleters).

The central lock is always acquired before any version lock. Code that holds
a version lock must not then wait on the central lock.
"""

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from filelock import FileLock, Timeout

from direxpiry.exceptions import IOFailure, LockModeConflict, LockUnavailable
from direxpiry.paths import PathLike, central_lock_path, version_lock_path

try:
    import fcntl
except ImportError:  # pragma: no cover - Windows
    fcntl = None

logger = logging.getLogger(__name__)


class LockMode(str, Enum):
    """Mode in which a lock is held."""

    SHARED = "shared"
    EXCLUSIVE = "exclusive"


class LockBackend(ABC):
    """Capability to take and drop advisory locks on lock files."""

    @abstractmethod
    def acquire(self, path: Path, exclusive: bool, timeout: Optional[float]) -> Any:
        """Block until ``path`` is locked in the requested mode.

        Args:
            path: Lock file path
            exclusive: Exclusive (True) or shared (False) mode
            timeout: Seconds to wait, or None to wait forever

        Returns:
            Opaque token to pass to :meth:`release`

        Raises:
            LockUnavailable: If the timeout expired
            IOFailure: If the lock file could not be opened
        """

    @abstractmethod
    def release(self, token: Any) -> None:
        """Release a lock taken by :meth:`acquire`."""


class _SharedFlock:
    """Open descriptor holding a shared ``flock``."""

    def __init__(self, path: Path, fd: int):
        self.path = path
        self.fd = fd


class FileLockBackend(LockBackend):
    """Lock backend on real lock files.

    Exclusive locks use :class:`filelock.FileLock`. Shared locks use
    ``flock(LOCK_SH)`` on the same file, which interoperates with filelock's
    Unix implementation. Where ``fcntl`` is unavailable, shared requests are
    served with an exclusive lock.
    """

    def __init__(self, poll_interval: float = 0.05):
        self.poll_interval = poll_interval

    def acquire(self, path: Path, exclusive: bool, timeout: Optional[float]) -> Any:
        if exclusive or fcntl is None:
            return self._acquire_exclusive(path, timeout)
        return self._acquire_shared(path, timeout)

    def _acquire_exclusive(self, path: Path, timeout: Optional[float]) -> FileLock:
        lock = FileLock(str(path))
        try:
            lock.acquire(
                timeout=-1 if timeout is None else timeout,
                poll_interval=self.poll_interval,
            )
        except Timeout as e:
            raise LockUnavailable(
                f"Timeout acquiring exclusive lock on {path} after {timeout} seconds"
            ) from e
        except OSError as e:
            raise IOFailure(f"Cannot open lock file {path}: {e}") from e
        return lock

    def _acquire_shared(self, path: Path, timeout: Optional[float]) -> _SharedFlock:
        try:
            fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise IOFailure(f"Cannot open lock file {path}: {e}") from e

        try:
            if timeout is None:
                fcntl.flock(fd, fcntl.LOCK_SH)
            else:
                deadline = time.monotonic() + timeout
                while True:
                    try:
                        fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        if time.monotonic() >= deadline:
                            raise LockUnavailable(
                                f"Timeout acquiring shared lock on {path} "
                                f"after {timeout} seconds"
                            )
                        time.sleep(self.poll_interval)
        except BaseException:
            os.close(fd)
            raise

        return _SharedFlock(path, fd)

    def release(self, token: Any) -> None:
        if isinstance(token, _SharedFlock):
            try:
                fcntl.flock(token.fd, fcntl.LOCK_UN)
            finally:
                os.close(token.fd)
        else:
            token.release()


class MemoryLockBackend(LockBackend):
    """In-process lock backend with the same semantics as real lock files.

    Useful in tests, where several handles in one process stand in for
    several processes. Lock files are not created.
    """

    def __init__(self):
        self._cond = threading.Condition()
        # path -> (number of shared holders, exclusive held)
        self._state: Dict[Path, Tuple[int, bool]] = {}

    def _available(self, path: Path, exclusive: bool) -> bool:
        shared, excl = self._state.get(path, (0, False))
        if exclusive:
            return shared == 0 and not excl
        return not excl

    def acquire(self, path: Path, exclusive: bool, timeout: Optional[float]) -> Any:
        path = Path(path)
        with self._cond:
            if not self._cond.wait_for(
                lambda: self._available(path, exclusive), timeout=timeout
            ):
                mode = "exclusive" if exclusive else "shared"
                raise LockUnavailable(
                    f"Timeout acquiring {mode} lock on {path} after {timeout} seconds"
                )
            shared, excl = self._state.get(path, (0, False))
            if exclusive:
                self._state[path] = (shared, True)
            else:
                self._state[path] = (shared + 1, excl)
        return (path, exclusive)

    def release(self, token: Any) -> None:
        path, exclusive = token
        with self._cond:
            shared, excl = self._state[path]
            if exclusive:
                excl = False
            else:
                shared -= 1
            if shared == 0 and not excl:
                del self._state[path]
            else:
                self._state[path] = (shared, excl)
            self._cond.notify_all()

    def holders(self, path: PathLike) -> Tuple[int, bool]:
        """Return ``(shared holders, exclusive held)`` for a lock path."""
        with self._cond:
            return self._state.get(Path(path), (0, False))


class CentralLock:
    """Exclusive lock over a whole base directory.

    Acquiring it creates the base directory if needed.
    """

    def __init__(
        self,
        base_path: PathLike,
        backend: Optional[LockBackend] = None,
        timeout: Optional[float] = None,
    ):
        self.base_path = Path(base_path)
        self.lock_path = central_lock_path(self.base_path)
        self.backend = backend or FileLockBackend()
        self.timeout = timeout
        self._token = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def acquire(self) -> "CentralLock":
        if self.held:
            raise LockModeConflict(f"Central lock on {self.base_path} is already held")
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"Cannot create base directory {self.base_path}: {e}") from e

        self._token = self.backend.acquire(self.lock_path, True, self.timeout)
        logger.debug(f"Acquired central lock {self.lock_path}")
        return self

    def release(self) -> None:
        if not self.held:
            raise LockModeConflict(f"Central lock on {self.base_path} is not held")
        token, self._token = self._token, None
        self.backend.release(token)
        logger.debug(f"Released central lock {self.lock_path}")

    def __enter__(self) -> "CentralLock":
        return self.acquire()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()


class VersionLock:
    """Handle on the lock of one versioned directory.

    The handle is reentrant: acquiring again in the held mode, or acquiring
    shared while holding exclusive, only bumps a counter. Asking for exclusive
    while holding shared raises :class:`LockModeConflict`; the lock is never
    silently upgraded.

    Attributes:
        path: The versioned directory
        lock_path: The lock file guarding it
    """

    def __init__(
        self,
        path: PathLike,
        backend: Optional[LockBackend] = None,
        timeout: Optional[float] = None,
    ):
        self.path = Path(path)
        self.lock_path = version_lock_path(self.path)
        self.backend = backend or FileLockBackend()
        self.timeout = timeout
        self._token = None
        self._mode: Optional[LockMode] = None
        self._depth = 0

    @property
    def held(self) -> bool:
        return self._depth > 0

    @property
    def mode(self) -> Optional[LockMode]:
        return self._mode

    def acquire(self, exclusive: bool = False) -> "VersionLock":
        requested = LockMode.EXCLUSIVE if exclusive else LockMode.SHARED

        if self.held:
            if requested is LockMode.EXCLUSIVE and self._mode is LockMode.SHARED:
                raise LockModeConflict(
                    f"Cannot acquire exclusive lock on {self.path} "
                    "while holding a shared lock"
                )
            self._depth += 1
            return self

        self._token = self.backend.acquire(self.lock_path, exclusive, self.timeout)
        self._mode = requested
        self._depth = 1
        logger.debug(f"Acquired {requested.value} lock on {self.path}")
        return self

    def release(self) -> None:
        if not self.held:
            raise LockModeConflict(f"Lock on {self.path} is not held")

        self._depth -= 1
        if self._depth == 0:
            token, self._token = self._token, None
            mode, self._mode = self._mode, None
            self.backend.release(token)
            logger.debug(f"Released {mode.value} lock on {self.path}")

    def __enter__(self) -> "VersionLock":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if self.held:
            self.release()

    def __repr__(self):
        state = self._mode.value if self._mode else "unlocked"
        return f"VersionLock('{self.path}', {state})"


def acquire_central(
    base_path: PathLike,
    backend: Optional[LockBackend] = None,
    timeout: Optional[float] = None,
) -> CentralLock:
    """Create ``base_path`` if needed and lock it exclusively."""
    return CentralLock(base_path, backend=backend, timeout=timeout).acquire()


def acquire_version(
    path: PathLike,
    exclusive: bool = False,
    backend: Optional[LockBackend] = None,
    timeout: Optional[float] = None,
    create: bool = False,
) -> VersionLock:
    """Lock one versioned directory.

    The base directory (and, with ``create``, the versioned directory) is
    created under the central lock, and the version lock is taken before the
    central lock is dropped. A concurrent expiry scan therefore never removes
    a lock file that someone is waiting on.

    Args:
        path: Path to the versioned directory (need not exist yet)
        exclusive: Whether to lock exclusively
        backend: Lock backend (real lock files if None)
        timeout: Seconds to wait for each lock, or None to wait forever
        create: Whether to create the versioned directory if missing

    Returns:
        Acquired VersionLock handle

    Raises:
        IOFailure: If the versioned directory cannot be created
    """
    path = Path(path)
    backend = backend or FileLockBackend()
    with CentralLock(path.parent, backend=backend, timeout=timeout):
        handle = VersionLock(path, backend=backend, timeout=timeout).acquire(exclusive)
        if create:
            try:
                path.mkdir(exist_ok=True)
            except OSError as e:
                handle.release()
                raise IOFailure(f"Cannot create versioned directory {path}: {e}") from e
        return handle
