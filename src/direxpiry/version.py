"""Version identifiers for versioned directories.

Versions are sequences of non-negative integers separated by ``.`` or ``-``,
e.g. ``1.11.0`` or ``3.16-2``. Comparison is component-wise and numeric, with
a shorter version sorting before any longer one sharing its prefix.
"""

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Tuple, Union

from direxpiry.exceptions import InvalidVersion

_VERSION_RE = re.compile(r"^\d+([.-]\d+)+$")


@total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """Totally ordered version value.

    Attributes:
        parts: Numeric components of the version
        text: Original string form, used for directory and stub names
    """

    parts: Tuple[int, ...]
    text: str

    @classmethod
    def parse(cls, value: Union[str, "Version"]) -> "Version":
        """Parse a version string.

        Args:
            value: Version string, or an existing Version (returned as-is)

        Returns:
            Version instance

        Raises:
            InvalidVersion: If the string is not a valid version

        Examples:
            >>> Version.parse("1.11.0").parts
            (1, 11, 0)
            >>> Version.parse("1.11.0") < Version.parse("1.12")
            True
        """
        if isinstance(value, Version):
            return value
        if not isinstance(value, str):
            raise InvalidVersion(f"Expected a version string, got {type(value).__name__}")

        text = value.strip()
        if not _VERSION_RE.match(text):
            raise InvalidVersion(f"Invalid version: {value!r}")

        parts = tuple(int(p) for p in re.split(r"[.-]", text))
        return cls(parts=parts, text=text)

    def __eq__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self.parts == other.parts

    def __lt__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self.parts < other.parts

    def __hash__(self):
        return hash(self.parts)

    def __str__(self):
        return self.text

    def __repr__(self):
        return f"Version('{self.text}')"
