"""On-disk naming for stubs and lock files.

For a base directory ``base`` and version ``v``:

- ``base/v`` is the versioned directory
- ``base/v_dir.expiry`` is the access stub
- ``base/v_dir.expiry-00LOCK`` locks writes to the stub
- ``base/v-00LOCK`` is the version lock
- ``base/central-00LOCK`` is the central lock
"""

from pathlib import Path
from typing import Optional, Union

EXPIRY_SUFFIX = "_dir.expiry"
LOCK_SUFFIX = "-00LOCK"
CENTRAL_LOCK_NAME = "central" + LOCK_SUFFIX

PathLike = Union[str, Path]


def version_dir(base_path: PathLike, version) -> Path:
    """Path of the versioned directory for ``version``."""
    return Path(base_path) / str(version)


def stub_path(path: PathLike) -> Path:
    """Path of the access stub for a versioned directory."""
    path = Path(path)
    return path.with_name(path.name + EXPIRY_SUFFIX)


def stub_lock_path(path: PathLike) -> Path:
    """Path of the lock guarding writes to the access stub."""
    stub = stub_path(path)
    return stub.with_name(stub.name + LOCK_SUFFIX)


def version_lock_path(path: PathLike) -> Path:
    """Path of the version lock for a versioned directory."""
    path = Path(path)
    return path.with_name(path.name + LOCK_SUFFIX)


def central_lock_path(base_path: PathLike) -> Path:
    """Path of the central lock for a base directory."""
    return Path(base_path) / CENTRAL_LOCK_NAME


def version_from_stub_name(filename: str) -> Optional[str]:
    """Extract the version name from a stub filename.

    Returns:
        Version name, or None if ``filename`` is not a stub

    Examples:
        >>> version_from_stub_name("1.11.0_dir.expiry")
        '1.11.0'
        >>> version_from_stub_name("1.11.0_dir.expiry-00LOCK") is None
        True
    """
    if not filename.endswith(EXPIRY_SUFFIX):
        return None
    name = filename[: -len(EXPIRY_SUFFIX)]
    return name or None
