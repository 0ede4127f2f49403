"""Data models for package versions and version ranges."""

from __future__ import annotations

from dataclasses import dataclass
from functools import total_ordering
from typing import Optional


@total_ordering
class Version:
    """A four-part package version with an optional pre-release label.

    Missing trailing components count as zero for ordering and equality, so
    ``1.0`` and ``1.0.0.0`` are the same version; ``str()`` keeps the text the
    version was created from.
    """

    __slots__ = ("_parts", "_special", "_text")

    def __init__(
        self,
        major: int,
        minor: int = 0,
        build: int = 0,
        revision: int = 0,
        special: Optional[str] = None,
        text: Optional[str] = None,
    ):
        parts = (int(major), int(minor), int(build), int(revision))
        if any(p < 0 for p in parts):
            raise ValueError("Version components must be non-negative")
        self._parts = parts
        self._special = special or None
        if text is None:
            shown = list(parts)
            while len(shown) > 2 and shown[-1] == 0:
                shown.pop()
            text = ".".join(str(p) for p in shown)
            if self._special:
                text = f"{text}-{self._special}"
        self._text = text

    @property
    def major(self) -> int:
        return self._parts[0]

    @property
    def minor(self) -> int:
        return self._parts[1]

    @property
    def build(self) -> int:
        return self._parts[2]

    @property
    def revision(self) -> int:
        return self._parts[3]

    @property
    def special(self) -> Optional[str]:
        """Pre-release label, e.g. ``alpha`` for ``1.0-alpha``."""
        return self._special

    @property
    def is_prerelease(self) -> bool:
        return self._special is not None

    def _key(self):
        # A release (no label) sorts after every pre-release of the same tuple.
        if self._special is None:
            return (self._parts, 1, "")
        return (self._parts, 0, self._special.lower())

    def __eq__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self):
        return hash(self._key())

    def __str__(self):
        return self._text

    def __repr__(self):
        return f"Version('{self._text}')"


@dataclass(frozen=True)
class VersionSpec:
    """A version range; ``None`` bounds are unbounded.

    An exact spec has ``min_version == max_version`` with both ends inclusive.
    """

    min_version: Optional[Version] = None
    is_min_inclusive: bool = False
    max_version: Optional[Version] = None
    is_max_inclusive: bool = False

    def __post_init__(self):
        lo, hi = self.min_version, self.max_version
        if lo is not None and hi is not None:
            if lo > hi:
                raise ValueError(f"Minimum version {lo} is greater than maximum version {hi}")
            if lo == hi and not (self.is_min_inclusive and self.is_max_inclusive):
                raise ValueError(f"Range with equal bounds {lo} must be inclusive on both ends")

    @classmethod
    def exact(cls, version: Version) -> "VersionSpec":
        return cls(version, True, version, True)

    @classmethod
    def at_least(cls, version: Version) -> "VersionSpec":
        return cls(min_version=version, is_min_inclusive=True)

    @property
    def is_exact(self) -> bool:
        return (
            self.min_version is not None
            and self.min_version == self.max_version
            and self.is_min_inclusive
            and self.is_max_inclusive
        )

    @property
    def is_unbounded(self) -> bool:
        return self.min_version is None and self.max_version is None

    def satisfies(self, version: Version) -> bool:
        """Return True if ``version`` lies inside this range."""
        if self.min_version is not None:
            if self.is_min_inclusive:
                if version < self.min_version:
                    return False
            elif version <= self.min_version:
                return False
        if self.max_version is not None:
            if self.is_max_inclusive:
                if version > self.max_version:
                    return False
            elif version >= self.max_version:
                return False
        return True

    is_satisfied_by = satisfies

    def __contains__(self, version: Version) -> bool:
        return self.satisfies(version)

    def __str__(self):
        if self.is_exact:
            return str(self.min_version)
        low = "[" if self.is_min_inclusive and self.min_version is not None else "("
        high = "]" if self.is_max_inclusive and self.max_version is not None else ")"
        lo = str(self.min_version) if self.min_version is not None else ""
        hi = str(self.max_version) if self.max_version is not None else ""
        return f"{low}{lo}, {hi}{high}"
