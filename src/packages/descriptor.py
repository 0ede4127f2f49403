"""Package metadata and two-phase access to package content.

A :class:`PackageDescriptor` is the lightweight, eagerly available part of a
package (what a feed listing or a manifest tells us). The payload is only
fetched when :meth:`PackageDescriptor.materialize` is called.
"""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING

from errors import FormatError
from versioning.models import Version
from .dependency import PackageDependency

if TYPE_CHECKING:
    from .manifest import Manifest

logger = logging.getLogger(__name__)

# Archive entries that are packaging metadata rather than package files.
_METADATA_PREFIXES = ("_rels/", "package/", "[content_types].xml")


@dataclass(frozen=True)
class DependencySet:
    """Dependencies scoped to one target framework; None applies to all."""

    target_framework: Optional[str] = None
    dependencies: Tuple[PackageDependency, ...] = ()

    def __post_init__(self):
        if not self.target_framework:
            object.__setattr__(self, "target_framework", None)
        seen = set()
        for dep in self.dependencies:
            key = dep.id.lower()
            if key in seen:
                raise FormatError(f"Duplicate dependency '{dep.id}' in dependency set")
            seen.add(key)

    def applies_to(self, target_framework: Optional[str]) -> bool:
        if self.target_framework is None:
            return True
        return bool(target_framework) and self.target_framework.lower() == target_framework.lower()


@dataclass(frozen=True)
class FrameworkAssembly:
    assembly_name: str
    target_framework: Optional[str] = None


@dataclass(frozen=True)
class PackageContent:
    """Materialized package: the raw ``.nupkg`` payload and its file names."""

    payload: bytes
    files: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: bytes) -> "PackageContent":
        try:
            with zipfile.ZipFile(io.BytesIO(payload)) as archive:
                names = archive.namelist()
        except zipfile.BadZipFile as exc:
            raise FormatError(f"Package payload is not a valid archive: {exc}") from exc
        files = tuple(
            n for n in names
            if not n.endswith("/")
            and not n.lower().startswith(_METADATA_PREFIXES)
            and not ("/" not in n and n.lower().endswith(".nuspec"))
        )
        return cls(payload=payload, files=files)


@dataclass(frozen=True)
class MaterializeResult:
    content: Optional[PackageContent] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.content is not None and self.error is None


@dataclass(frozen=True)
class PackageDescriptor:
    """Immutable package metadata.

    ``downloader`` returns the package payload; it is not part of equality or
    the repr. Identity is (id case-insensitive, version).
    """

    id: str
    version: Version
    dependency_sets: Tuple[DependencySet, ...] = ()
    authors: Tuple[str, ...] = ()
    owners: Tuple[str, ...] = ()
    title: Optional[str] = None
    description: Optional[str] = None
    summary: Optional[str] = None
    release_notes: Optional[str] = None
    copyright: Optional[str] = None
    language: Optional[str] = None
    tags: Tuple[str, ...] = ()
    project_url: Optional[str] = None
    license_url: Optional[str] = None
    icon_url: Optional[str] = None
    require_license_acceptance: bool = False
    framework_assemblies: Tuple[FrameworkAssembly, ...] = ()
    references: Tuple[str, ...] = ()
    listed: bool = True
    package_hash: Optional[str] = None
    package_hash_algorithm: Optional[str] = None
    source: Optional[str] = None
    downloader: Optional[Callable[[], bytes]] = field(default=None, compare=False, repr=False)

    def __eq__(self, other):
        if not isinstance(other, PackageDescriptor):
            return NotImplemented
        return self.id.lower() == other.id.lower() and self.version == other.version

    def __hash__(self):
        return hash((self.id.lower(), self.version))

    def __str__(self):
        return f"{self.id} {self.version}"

    @property
    def key(self) -> Tuple[str, Version]:
        return (self.id.lower(), self.version)

    @property
    def is_prerelease(self) -> bool:
        return self.version.is_prerelease

    @property
    def dependencies(self) -> Tuple[PackageDependency, ...]:
        """Dependencies that apply regardless of target framework."""
        return tuple(self.dependencies_for(None))

    def dependencies_for(self, target_framework: Optional[str] = None) -> List[PackageDependency]:
        """Dependencies effective for ``target_framework``.

        A set for the exact framework wins, then the framework-agnostic set.
        Without a framework the agnostic set is used; packages that only ship
        framework groups then contribute the union of their groups, first
        occurrence of an id winning.
        """
        generic = [s for s in self.dependency_sets if s.target_framework is None]
        if target_framework:
            for dep_set in self.dependency_sets:
                if dep_set.target_framework is not None and dep_set.applies_to(target_framework):
                    return list(dep_set.dependencies)
            return list(generic[0].dependencies) if generic else []
        if generic:
            return list(generic[0].dependencies)
        return _union(s.dependencies for s in self.dependency_sets)

    def materialize(self) -> MaterializeResult:
        """Fetch the payload. Download and archive errors are returned, not raised."""
        if self.downloader is None:
            return MaterializeResult(error=FormatError(f"No content source for package {self}"))
        try:
            payload = self.downloader()
            return MaterializeResult(content=PackageContent.from_payload(payload))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.debug("Materializing %s failed: %s", self, exc)
            return MaterializeResult(error=exc)

    def with_downloader(self, downloader: Callable[[], bytes], **changes) -> "PackageDescriptor":
        """Return a copy bound to another content source."""
        values: Dict[str, object] = {f: getattr(self, f) for f in self.__dataclass_fields__}
        values.update(changes)
        values["downloader"] = downloader
        return PackageDescriptor(**values)

    @classmethod
    def from_manifest(cls, manifest: "Manifest", **extra) -> "PackageDescriptor":
        """Build a descriptor from parsed manifest metadata."""
        md = manifest.metadata
        return cls(
            id=md.id,
            version=md.version,
            dependency_sets=md.dependency_sets,
            authors=md.authors,
            owners=md.owners,
            title=md.title,
            description=md.description,
            summary=md.summary,
            release_notes=md.release_notes,
            copyright=md.copyright,
            language=md.language,
            tags=md.tags,
            project_url=md.project_url,
            license_url=md.license_url,
            icon_url=md.icon_url,
            require_license_acceptance=md.require_license_acceptance,
            framework_assemblies=md.framework_assemblies,
            references=md.references,
            **extra,
        )


def _union(groups: Iterable[Iterable[PackageDependency]]) -> List[PackageDependency]:
    seen = set()
    merged: List[PackageDependency] = []
    for group in groups:
        for dep in group:
            if dep.id.lower() not in seen:
                seen.add(dep.id.lower())
                merged.append(dep)
    return merged
