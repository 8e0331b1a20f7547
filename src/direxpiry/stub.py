"""Access stub records.

A stub is a small text file of ``Key: value`` lines next to a versioned
directory, recording the day it was last accessed::

    ExpiryFormatVersion: 1.0
    AccessDate: 20345

``AccessDate`` counts days since 1970-01-01.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Dict

from direxpiry.exceptions import IOFailure
from direxpiry.paths import PathLike

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"
EPOCH = date(1970, 1, 1)


def to_day_count(day: date) -> int:
    """Convert a date into the number of days since 1970-01-01."""
    return (day - EPOCH).days


def from_day_count(count: int) -> date:
    """Convert a number of days since 1970-01-01 back into a date."""
    return EPOCH + timedelta(days=count)


@dataclass(frozen=True)
class AccessStub:
    """Last access record of a versioned directory.

    Attributes:
        access_date: Day of last access, as days since 1970-01-01
        format_version: Version of the stub format that wrote the record
    """

    access_date: int
    format_version: str = FORMAT_VERSION

    @classmethod
    def for_date(cls, day: date) -> "AccessStub":
        return cls(access_date=to_day_count(day))

    @property
    def accessed_on(self) -> date:
        return from_day_count(self.access_date)

    def age(self, today: date) -> int:
        """Number of days between the last access and ``today``."""
        return to_day_count(today) - self.access_date

    def to_text(self) -> str:
        return f"ExpiryFormatVersion: {self.format_version}\nAccessDate: {self.access_date}\n"


def _parse_fields(text: str) -> Dict[str, str]:
    fields = {}
    for line in text.splitlines():
        if not line.strip():
            continue
        key, sep, value = line.partition(":")
        if not sep:
            raise ValueError(f"Malformed line: {line!r}")
        fields[key.strip()] = value.strip()
    return fields


def read_stub(path: PathLike) -> AccessStub:
    """Read an access stub file.

    Args:
        path: Path to the ``*_dir.expiry`` file

    Returns:
        AccessStub instance

    Raises:
        IOFailure: If the file cannot be read or has no valid AccessDate
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            fields = _parse_fields(f.read())
        access_date = int(fields["AccessDate"])
    except OSError as e:
        raise IOFailure(f"Cannot read access stub {path}: {e}") from e
    except (KeyError, ValueError) as e:
        raise IOFailure(f"Corrupted access stub {path}: {e}") from e

    return AccessStub(
        access_date=access_date,
        format_version=fields.get("ExpiryFormatVersion", FORMAT_VERSION),
    )


def write_stub(path: PathLike, stub: AccessStub) -> None:
    """Atomically write an access stub file.

    The record is written to a uniquely named temporary file in the same
    directory and then renamed over ``path``, so readers see either the old
    or the new stub, and concurrent writers never share a temporary file.
    Callers should hold the stub lock.

    Args:
        path: Path to the ``*_dir.expiry`` file
        stub: Record to write

    Raises:
        IOFailure: If the file cannot be written
    """
    path = Path(path)
    temp_path = None

    try:
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=path.name + ".", suffix=".tmp")
        temp_path = Path(temp_name)
        os.chmod(temp_name, 0o644)
        with os.fdopen(fd, "w") as f:
            f.write(stub.to_text())
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(path)
    except OSError as e:
        logger.error(f"Error writing access stub {path}: {e}")
        if temp_path is not None:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning(f"Failed to clean up temp file {temp_path}: {cleanup_error}")
        raise IOFailure(f"Cannot write access stub {path}: {e}") from e

    logger.debug(f"Wrote access stub {path} (AccessDate={stub.access_date})")
