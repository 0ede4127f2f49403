"""Package dependencies: an id plus an optional version range."""

from __future__ import annotations

from typing import List, Optional

from errors import ArgumentError
from versioning.models import Version, VersionSpec
from versioning.parser import parse_version_spec, try_parse_version


class PackageDependency:
    """Immutable (id, version spec) pair.

    Equality and hashing use the id only, case-insensitively: two
    dependencies on the same package with different ranges are the same
    dependency for de-duplication and conflict purposes.
    """

    __slots__ = ("_id", "_spec", "_target_framework")

    def __init__(self, package_id: str, version_spec: Optional[VersionSpec] = None,
                 target_framework: Optional[str] = None):
        if not package_id or not package_id.strip():
            raise ArgumentError("Dependency id cannot be empty")
        self._id = package_id.strip()
        self._spec = version_spec
        self._target_framework = target_framework or None

    @property
    def id(self) -> str:
        return self._id

    @property
    def version_spec(self) -> Optional[VersionSpec]:
        return self._spec

    @property
    def target_framework(self) -> Optional[str]:
        return self._target_framework

    def satisfies(self, version: Version) -> bool:
        return self._spec is None or self._spec.satisfies(version)

    def __eq__(self, other):
        if not isinstance(other, PackageDependency):
            return NotImplemented
        return self._id.lower() == other._id.lower()

    def __hash__(self):
        return hash(self._id.lower())

    def __str__(self):
        if self._spec is None:
            return self._id
        return f"{self._id} ({self._spec})"

    def __repr__(self):
        return f"PackageDependency({self._id!r}, {str(self._spec) if self._spec else None!r})"


def create_dependency(
    package_id: str,
    version_min: Optional[Version] = None,
    version_max: Optional[Version] = None,
    version_exact: Optional[Version] = None,
) -> PackageDependency:
    """Build a dependency from the legacy three-bound form.

    ``version_exact`` wins over ``version_min``/``version_max``; bounds are
    inclusive. No bounds at all means any version.

    Raises:
        ArgumentError: if ``package_id`` is empty.
    """
    if not package_id or not package_id.strip():
        raise ArgumentError("Dependency id cannot be empty")

    if version_exact is not None:
        return PackageDependency(package_id, VersionSpec.exact(version_exact))
    if version_min is None and version_max is None:
        return PackageDependency(package_id)
    if version_max is None:
        return PackageDependency(package_id, VersionSpec.at_least(version_min))
    try:
        spec = VersionSpec(
            min_version=version_min,
            is_min_inclusive=version_min is not None,
            max_version=version_max,
            is_max_inclusive=version_max is not None,
        )
    except ValueError as exc:
        raise ArgumentError(f"Invalid bounds for dependency '{package_id}': {exc}") from exc
    return PackageDependency(package_id, spec)


def parse_dependency_string(text: Optional[str]) -> List[PackageDependency]:
    """Parse the flattened dependency list carried by feed entries.

    Entries are comma separated. The legacy form is ``id:min:max:exact`` with
    any bound left empty; newer feeds use ``id:spec[:framework]`` joined with
    ``|``. Entries that match neither shape are skipped.
    """
    if not text or not text.strip():
        return []

    deps: List[PackageDependency] = []
    legacy = "|" not in text and any(len(e.split(":")) == 4 for e in text.split(","))
    for raw in text.split("," if legacy else "|"):
        entry = raw.strip()
        if not entry:
            continue
        parts = entry.split(":")
        if not parts[0].strip():
            continue
        if legacy:
            if len(parts) != 4:
                continue
            deps.append(create_dependency(
                parts[0],
                try_parse_version(parts[1]),
                try_parse_version(parts[2]),
                try_parse_version(parts[3]),
            ))
        elif len(parts) <= 3:
            spec_text = parts[1].strip() if len(parts) > 1 else ""
            framework = parts[2].strip() if len(parts) > 2 else None
            spec = parse_version_spec(spec_text) if spec_text else None
            deps.append(PackageDependency(parts[0], spec, framework))
    return deps
