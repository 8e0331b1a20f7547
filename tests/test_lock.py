"""Unit tests for directory locks."""

import sys
import tempfile
import threading
import time
from pathlib import Path

import pytest

from direxpiry.exceptions import IOFailure, LockModeConflict, LockUnavailable
from direxpiry.lock import (
    CentralLock,
    FileLockBackend,
    LockMode,
    MemoryLockBackend,
    VersionLock,
    acquire_central,
    acquire_version,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="shared locks need flock")


@pytest.fixture
def base_dir():
    """Create temporary base directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "cache"


@pytest.fixture
def memory_backend():
    return MemoryLockBackend()


class TestAcquireVersion:
    """Test locking versioned directories on real lock files."""

    def test_generates_lock_files(self, base_dir):
        """Test that locking creates the version and central lock files."""
        base_dir.mkdir()
        handle = acquire_version(base_dir / "1.11.0")

        assert (base_dir / "1.11.0-00LOCK").exists()
        assert (base_dir / "central-00LOCK").exists()
        assert handle.held
        assert handle.mode is LockMode.SHARED
        handle.release()
        assert not handle.held

    def test_creates_missing_base_directory(self, base_dir):
        """Test locking works when the base directory doesn't exist yet."""
        handle = acquire_version(base_dir / "1.0.0", exclusive=True)

        assert base_dir.is_dir()
        assert (base_dir / "1.0.0-00LOCK").exists()
        assert (base_dir / "central-00LOCK").exists()
        # The versioned directory itself is left to the caller
        assert not (base_dir / "1.0.0").exists()
        handle.release()

    def test_create_versioned_directory(self, base_dir):
        """Test create=True makes the versioned directory under the lock."""
        handle = acquire_version(base_dir / "1.0.0", create=True)
        assert (base_dir / "1.0.0").is_dir()
        handle.release()

        # Existing directories are reused
        handle = acquire_version(base_dir / "1.0.0", create=True)
        handle.release()

    def test_create_failure_releases_locks(self, base_dir):
        """Test a failed directory creation releases both locks."""
        backend = MemoryLockBackend()
        base_dir.mkdir()
        (base_dir / "1.0.0").write_text("not a directory")

        with pytest.raises(IOFailure):
            acquire_version(base_dir / "1.0.0", backend=backend, create=True)

        assert backend.holders(base_dir / "1.0.0-00LOCK") == (0, False)
        assert backend.holders(base_dir / "central-00LOCK") == (0, False)

    def test_central_lock_released_after_acquire(self, base_dir):
        """Test that the central lock is not held once the version lock is."""
        handle = acquire_version(base_dir / "1.0.0", backend=FileLockBackend())
        central = acquire_central(base_dir, timeout=0.5)
        central.release()
        handle.release()

    @posix_only
    def test_shared_locks_coexist(self, base_dir):
        """Test that two shared holders don't block each other."""
        first = acquire_version(base_dir / "1.0.0", timeout=0.5)
        second = acquire_version(base_dir / "1.0.0", timeout=0.5)
        assert first.held and second.held
        first.release()
        second.release()

    @posix_only
    def test_exclusive_blocked_by_shared(self, base_dir):
        """Test that an exclusive request times out while a shared lock is held."""
        reader = acquire_version(base_dir / "1.0.0")
        with pytest.raises(LockUnavailable):
            acquire_version(base_dir / "1.0.0", exclusive=True, timeout=0.2)
        reader.release()

        writer = acquire_version(base_dir / "1.0.0", exclusive=True, timeout=0.5)
        writer.release()

    @posix_only
    def test_shared_blocked_by_exclusive(self, base_dir):
        """Test that a shared request times out while an exclusive lock is held."""
        writer = acquire_version(base_dir / "1.0.0", exclusive=True)
        with pytest.raises(LockUnavailable):
            acquire_version(base_dir / "1.0.0", timeout=0.2)
        writer.release()


class TestVersionLockHandle:
    """Test VersionLock reentrancy and mode rules."""

    def test_reentrant_same_mode(self, base_dir, memory_backend):
        """Test re-acquiring in the held mode nests."""
        handle = VersionLock(base_dir / "1.0.0", backend=memory_backend)
        handle.acquire()
        handle.acquire()
        handle.release()
        assert handle.held
        handle.release()
        assert not handle.held
        assert memory_backend.holders(base_dir / "1.0.0-00LOCK") == (0, False)

    def test_shared_within_exclusive(self, base_dir, memory_backend):
        """Test a shared request is satisfied by a held exclusive lock."""
        handle = VersionLock(base_dir / "1.0.0", backend=memory_backend)
        handle.acquire(exclusive=True)
        handle.acquire(exclusive=False)
        assert handle.mode is LockMode.EXCLUSIVE
        handle.release()
        handle.release()

    def test_escalation_rejected(self, base_dir, memory_backend):
        """Test shared to exclusive escalation raises LockModeConflict."""
        handle = VersionLock(base_dir / "1.0.0", backend=memory_backend)
        handle.acquire()
        with pytest.raises(LockModeConflict):
            handle.acquire(exclusive=True)
        # Still held in the original mode
        assert handle.mode is LockMode.SHARED
        handle.release()

    def test_double_release(self, base_dir, memory_backend):
        """Test releasing an unheld lock is an error."""
        handle = VersionLock(base_dir / "1.0.0", backend=memory_backend)
        handle.acquire()
        handle.release()
        with pytest.raises(LockModeConflict):
            handle.release()

    def test_context_manager_releases(self, base_dir, memory_backend):
        """Test the handle releases on exit, including on error."""
        handle = VersionLock(base_dir / "1.0.0", backend=memory_backend)
        with pytest.raises(RuntimeError):
            with handle.acquire(exclusive=True):
                raise RuntimeError("boom")
        assert not handle.held
        assert memory_backend.holders(handle.lock_path) == (0, False)


class TestCentralLock:
    """Test the central lock."""

    def test_creates_base_directory(self, base_dir):
        """Test acquiring the central lock creates the base directory."""
        with CentralLock(base_dir) as central:
            assert central.held
            assert base_dir.is_dir()
            assert (base_dir / "central-00LOCK").exists()
        assert not central.held

    def test_exclusive(self, base_dir):
        """Test a second central lock times out."""
        with CentralLock(base_dir):
            with pytest.raises(LockUnavailable):
                acquire_central(base_dir, timeout=0.2)

    def test_double_acquire(self, base_dir, memory_backend):
        """Test re-acquiring the same central handle is an error."""
        central = acquire_central(base_dir, backend=memory_backend)
        with pytest.raises(LockModeConflict):
            central.acquire()
        central.release()


class TestMemoryLockBackend:
    """Test the in-memory lock backend."""

    def test_shared_and_exclusive(self, memory_backend):
        """Test shared holders block exclusive until released."""
        path = Path("/fake/1.0.0-00LOCK")
        first = memory_backend.acquire(path, False, None)
        second = memory_backend.acquire(path, False, None)
        assert memory_backend.holders(path) == (2, False)

        with pytest.raises(LockUnavailable):
            memory_backend.acquire(path, True, 0.05)

        memory_backend.release(first)
        memory_backend.release(second)
        token = memory_backend.acquire(path, True, 0.05)
        assert memory_backend.holders(path) == (0, True)
        memory_backend.release(token)

    def test_waiter_wakes_on_release(self, memory_backend):
        """Test a blocked acquisition proceeds once the lock is released."""
        path = Path("/fake/central-00LOCK")
        token = memory_backend.acquire(path, True, None)
        acquired = []

        def waiter():
            t = memory_backend.acquire(path, True, 5)
            acquired.append(t)
            memory_backend.release(t)

        thread = threading.Thread(target=waiter)
        thread.start()
        time.sleep(0.05)
        assert acquired == []
        memory_backend.release(token)
        thread.join(timeout=5)
        assert len(acquired) == 1
