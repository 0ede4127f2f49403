"""Error taxonomy shared by the parsing, resolution and restore layers."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


class NuPackError(Exception):
    """Base class for all errors raised by this package."""


class FormatError(NuPackError, ValueError):
    """Malformed manifest, version, version range or reference file text."""


class ArgumentError(NuPackError, ValueError):
    """Invalid call-time input, e.g. an empty package id."""


class FeedError(NuPackError, ConnectionError):
    """A remote package source could not be reached or returned garbage."""


class SolutionNotAvailableError(NuPackError, RuntimeError):
    """Restore was requested while no solution is open."""


class DependencyResolutionError(NuPackError, LookupError):
    """No repository offers a version matching the requested spec."""

    def __init__(self, package_id: str, spec=None, message: Optional[str] = None):
        self.package_id = package_id
        self.spec = spec
        if message is None:
            if spec is None:
                message = f"Unable to resolve dependency '{package_id}'."
            else:
                message = f"Unable to resolve dependency '{package_id} ({spec})'."
        super().__init__(message)


class DependencyConflictError(NuPackError):
    """Two top-level requests resolved to different versions of one package.

    ``requests`` holds ``(requester, version)`` pairs, one per disagreeing
    request, in request order.
    """

    def __init__(self, package_id: str, requests: Sequence[Tuple[str, object]]):
        self.package_id = package_id
        self.requests = tuple(requests)
        detail = ", ".join(f"{who} requires {ver}" for who, ver in self.requests)
        super().__init__(f"Version conflict for '{package_id}': {detail}.")

    @property
    def requesters(self) -> Tuple[str, ...]:
        return tuple(who for who, _ in self.requests)

    @property
    def versions(self) -> Tuple[object, ...]:
        return tuple(ver for _, ver in self.requests)


class CacheIntegrityError(NuPackError):
    """A package payload does not match the hash advertised by its source."""

    def __init__(self, package_id: str, version, expected: str, actual: str):
        self.package_id = package_id
        self.version = version
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Hash mismatch for {package_id} {version}: expected {expected}, got {actual}."
        )
