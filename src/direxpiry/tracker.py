"""Recording of last access dates for versioned directories."""

import logging
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Optional

from direxpiry.lock import FileLockBackend, LockBackend
from direxpiry.paths import PathLike, stub_lock_path, stub_path
from direxpiry.stub import AccessStub, write_stub

logger = logging.getLogger(__name__)


class TouchCache:
    """Per-process record of the last day each directory was touched.

    Only an optimization: it lets repeated touches on the same day skip the
    filesystem, but the stub's existence is always re-checked before a skip.
    """

    def __init__(self, today: Callable[[], date] = date.today):
        self._today = today
        self._last_checked: Dict[str, date] = {}

    @staticmethod
    def _key(path: PathLike) -> str:
        return str(Path(path).absolute())

    def was_checked_today(self, path: PathLike) -> bool:
        return self._last_checked.get(self._key(path)) == self._today()

    def mark(self, path: PathLike) -> None:
        self._last_checked[self._key(path)] = self._today()

    def last_checked(self, path: PathLike) -> Optional[date]:
        return self._last_checked.get(self._key(path))

    def flush(self) -> None:
        """Forget every recorded touch."""
        self._last_checked.clear()

    def __len__(self):
        return len(self._last_checked)

    def __contains__(self, path):
        return self._key(path) in self._last_checked


class AccessTracker:
    """Writes access stubs, skipping redundant writes within a day.

    Stub writes take a lock on the stub itself rather than the version lock,
    so several holders of a shared version lock can all record their access.
    """

    def __init__(
        self,
        cache: Optional[TouchCache] = None,
        backend: Optional[LockBackend] = None,
        lock_timeout: Optional[float] = None,
        today: Callable[[], date] = date.today,
    ):
        self.today = today
        self.cache = cache if cache is not None else TouchCache(today=today)
        self.backend = backend or FileLockBackend()
        self.lock_timeout = lock_timeout

    def touch(
        self, path: PathLike, date: Optional[date] = None, force: bool = False
    ) -> bool:
        """Record an access to a versioned directory.

        Args:
            path: Path to the versioned directory
            date: Access date to record (today if None)
            force: Write even if the directory was already touched today

        Returns:
            True if the stub was written, False if the write was skipped

        Raises:
            LockUnavailable: If the stub lock timed out
            IOFailure: If the stub could not be written
        """
        path = Path(path)
        target = stub_path(path)

        if not force and self.cache.was_checked_today(path) and target.exists():
            return False

        stub = AccessStub.for_date(date or self.today())
        lock_path = stub_lock_path(path)
        token = self.backend.acquire(lock_path, True, self.lock_timeout)
        try:
            write_stub(target, stub)
        finally:
            self.backend.release(token)

        self.cache.mark(path)
        logger.debug(f"Touched {path} (AccessDate={stub.access_date})")
        return True

    def flush(self) -> None:
        """Clear the touch cache."""
        self.cache.flush()
