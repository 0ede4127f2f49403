"""Version and version-range parsing.

Grammar accepted by :func:`parse_version_spec`::

    1.0          exact version 1.0
    [1.0]        exact version 1.0
    [1.0,2.0)    1.0 <= v < 2.0
    (1.0,)       v > 1.0
    (,2.0]       v <= 2.0
    (,)          any version
"""

import re
from typing import Optional

from errors import FormatError
from .models import Version, VersionSpec

_VERSION_RE = re.compile(
    r"^\s*(?P<nums>\d+(?:\.\d+){0,3})(?:-(?P<special>[A-Za-z][0-9A-Za-z\-]*))?\s*$"
)


def parse_version(text: str) -> Version:
    """Parse ``major[.minor[.build[.revision]]][-label]``.

    Raises:
        FormatError: if the text is not a valid version.
    """
    if text is None:
        raise FormatError("Version text is required")
    m = _VERSION_RE.match(text)
    if not m:
        raise FormatError(f"'{text}' is not a valid version string")
    nums = [int(p) for p in m.group("nums").split(".")]
    return Version(*nums, special=m.group("special"), text=text.strip())


def try_parse_version(text: Optional[str]) -> Optional[Version]:
    """Return the parsed version, or None for empty or invalid text."""
    if not text or not text.strip():
        return None
    try:
        return parse_version(text)
    except FormatError:
        return None


def parse_version_spec(text: str) -> VersionSpec:
    """Parse an exact version or a bracketed version range.

    Raises:
        FormatError: on malformed brackets or versions, or when low > high.
    """
    if text is None:
        raise FormatError("Version spec text is required")
    value = text.strip()
    if not value:
        raise FormatError("Version spec text is empty")

    if value[0] not in "[(":
        return VersionSpec.exact(parse_version(value))

    if len(value) < 3 or value[-1] not in ")]":
        raise FormatError(f"'{text}' is not a valid version range")

    min_inclusive = value[0] == "["
    max_inclusive = value[-1] == "]"
    inner = value[1:-1]
    parts = inner.split(",")
    if len(parts) > 2:
        raise FormatError(f"'{text}' has more than two range endpoints")

    if len(parts) == 1:
        # [1.0] is the exact form; (1.0) and [1.0) make no sense.
        if not (min_inclusive and max_inclusive):
            raise FormatError(f"'{text}' is not a valid exact version range")
        return VersionSpec.exact(parse_version(parts[0]))

    low_text, high_text = parts[0].strip(), parts[1].strip()
    low = parse_version(low_text) if low_text else None
    high = parse_version(high_text) if high_text else None

    if (low is None and min_inclusive) or (high is None and max_inclusive):
        raise FormatError(f"'{text}' cannot include an unbounded endpoint")

    try:
        return VersionSpec(low, min_inclusive, high, max_inclusive)
    except ValueError as exc:
        raise FormatError(f"'{text}' is not a valid version range: {exc}") from exc


def try_parse_version_spec(text: Optional[str]) -> Optional[VersionSpec]:
    """Return the parsed spec, or None for empty or invalid text."""
    if not text or not text.strip():
        return None
    try:
        return parse_version_spec(text)
    except FormatError:
        return None
