"""Deletion of expired versioned directories."""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from direxpiry.config import ExpiryConfig, get_global_config, resolve_limit
from direxpiry.exceptions import DirExpiryError, IOFailure
from direxpiry.lock import CentralLock, FileLockBackend, LockBackend, VersionLock
from direxpiry.paths import (
    PathLike,
    stub_lock_path,
    stub_path,
    version_dir,
    version_from_stub_name,
    version_lock_path,
)
from direxpiry.stub import AccessStub, read_stub
from direxpiry.version import Version

logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    """Outcome of one expiry scan.

    Attributes:
        base_path: Scanned base directory
        limit_days: Expiry limit used
        reference: Protected reference version, if any
        deleted: Versions whose directories were removed
        protected: Versions skipped for being at or above the reference
        failed: Versions that could not be processed, with the error message
    """

    base_path: Path
    limit_days: int
    reference: Optional[Version] = None
    deleted: List[str] = field(default_factory=list)
    protected: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


def _remove_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        raise IOFailure(f"Cannot delete {path}: {e}") from e


def _remove_tree(path: Path) -> None:
    if not path.exists() and not path.is_symlink():
        return
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as e:
        raise IOFailure(f"Cannot delete {path}: {e}") from e


class ExpiryScanner:
    """Finds and deletes versioned directories that have not been used recently.

    A version is deleted when its stub is older than the expiry limit and it
    is below the reference version (if one is given). Deletion happens under
    the central lock and an exclusive version lock, so a directory locked by
    another process is waited for rather than pulled from under it.
    """

    def __init__(
        self,
        config: Optional[ExpiryConfig] = None,
        backend: Optional[LockBackend] = None,
        today: Callable[[], date] = date.today,
    ):
        self._config = config
        self.backend = backend or FileLockBackend(poll_interval=self.config.poll_interval)
        self.today = today

    @property
    def config(self) -> ExpiryConfig:
        """The explicit configuration, or the current global one."""
        return self._config or get_global_config()

    def list_stubs(self, base_path: PathLike) -> List[Tuple[str, Path]]:
        """List the stubs directly under a base directory.

        Returns:
            Sorted ``(version name, stub path)`` pairs
        """
        base_path = Path(base_path)
        if not base_path.is_dir():
            return []

        try:
            entries = list(base_path.iterdir())
        except OSError as e:
            raise IOFailure(f"Cannot list base directory {base_path}: {e}") from e

        stubs = []
        for entry in entries:
            name = version_from_stub_name(entry.name)
            if name is not None and entry.is_file():
                stubs.append((name, entry))
        return sorted(stubs)

    def get_status(
        self, base_path: PathLike, limit: Optional[Any] = None
    ) -> Dict[str, Dict[str, Any]]:
        """Report the access state of every version under a base directory.

        Args:
            base_path: Base directory
            limit: Expiry limit in days (resolved as for :meth:`clear_expired`)

        Returns:
            Dict mapping version names to status dicts
        """
        limit_days = resolve_limit(limit, self._config)
        today = self.today()
        status = {}

        for name, stub_file in self.list_stubs(base_path):
            try:
                stub = read_stub(stub_file)
            except IOFailure as e:
                status[name] = {"error": str(e)}
                continue

            age = stub.age(today)
            status[name] = {
                "access_date": stub.accessed_on.isoformat(),
                "age_days": age,
                "expired": age > limit_days,
                "directory_exists": version_dir(base_path, name).exists(),
            }

        return status

    def clear_expired(
        self,
        base_path: PathLike,
        reference: Optional[Union[str, Version]] = None,
        limit: Optional[Any] = None,
    ) -> ScanReport:
        """Delete expired versioned directories.

        Failures on individual versions are logged and recorded in the report;
        they never abort the scan.

        Args:
            base_path: Base directory containing the versioned directories
            reference: Version to protect, along with every version above it
            limit: Expiry limit in days (configured or environment default if None)

        Returns:
            ScanReport describing what was deleted

        Raises:
            ConfigError: If the expiry limit is invalid
            InvalidVersion: If ``reference`` is not a valid version
        """
        base_path = Path(base_path)
        limit_days = resolve_limit(limit, self._config)
        if reference is not None:
            reference = Version.parse(reference)

        report = ScanReport(base_path=base_path, limit_days=limit_days, reference=reference)
        try:
            candidates = self.list_stubs(base_path)
        except IOFailure as e:
            logger.warning(f"Skipping expiry scan of {base_path}: {e}")
            return report

        if reference is not None:
            candidates = [(n, p) for n, p in candidates if n != reference.text]

        today = self.today()
        for name, stub_file in candidates:
            try:
                if reference is not None and Version.parse(name) >= reference:
                    report.protected.append(name)
                    continue

                stub = self._read_if_present(stub_file)
                if stub is None or stub.age(today) <= limit_days:
                    continue

                if self._delete_version(base_path, name, limit_days, today):
                    report.deleted.append(name)
            except DirExpiryError as e:
                logger.warning(f"Failed to clear version {name} in {base_path}: {e}")
                report.failed[name] = str(e)

        if report.deleted:
            logger.info(
                f"Cleared {len(report.deleted)} expired version(s) from {base_path}: "
                f"{', '.join(report.deleted)}"
            )
        return report

    @staticmethod
    def _read_if_present(stub_file: Path) -> Optional[AccessStub]:
        if not stub_file.exists():
            return None
        return read_stub(stub_file)

    def _delete_version(
        self, base_path: Path, name: str, limit_days: int, today: date
    ) -> bool:
        """Delete one version under lock, if it is still expired."""
        path = version_dir(base_path, name)
        timeout = self.config.lock_timeout

        with CentralLock(base_path, backend=self.backend, timeout=timeout):
            handle = VersionLock(path, backend=self.backend, timeout=timeout)
            handle.acquire(exclusive=True)
            deleted = False
            try:
                # Re-read under lock: another process may have touched it.
                stub = self._read_if_present(stub_path(path))
                if stub is None or stub.age(today) <= limit_days:
                    return False

                _remove_file(stub_path(path))
                _remove_file(stub_lock_path(path))
                _remove_tree(path)
                deleted = True
            finally:
                handle.release()

            if deleted:
                _remove_file(version_lock_path(path))
                logger.info(f"Deleted expired version {name} from {base_path}")
            return deleted
