"""Repository contract shared by local stores, the machine cache and remote feeds."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from packages.descriptor import PackageDescriptor
from versioning.models import Version, VersionSpec


class PackageRepository(ABC):
    """Queryable set of packages keyed by (id, version)."""

    source: str = ""

    @abstractmethod
    def get_packages_by_id(self, package_id: str) -> List[PackageDescriptor]:
        """Return every version of ``package_id`` this repository knows, listed or not."""

    def find_packages(
        self,
        package_id: str,
        spec: Optional[VersionSpec] = None,
        allow_prerelease: bool = True,
        allow_unlisted: bool = False,
    ) -> List[PackageDescriptor]:
        """Versions of ``package_id`` eligible for ``spec``, lowest first.

        Unlisted versions only qualify when ``allow_unlisted`` is set or the
        spec pins that exact version.
        """
        matches = []
        for pkg in self.get_packages_by_id(package_id):
            if spec is not None and not spec.satisfies(pkg.version):
                continue
            exact_pin = spec is not None and spec.is_exact
            if not pkg.listed and not (allow_unlisted or exact_pin):
                continue
            if pkg.is_prerelease and not allow_prerelease and not exact_pin:
                continue
            matches.append(pkg)
        return sorted(matches, key=lambda p: p.version)

    def find_package(
        self,
        package_id: str,
        version: Optional[Version] = None,
        allow_prerelease: bool = True,
        allow_unlisted: bool = False,
    ) -> Optional[PackageDescriptor]:
        """Find one package.

        With ``version`` the exact version is returned whether listed or not;
        without it, the highest eligible version.
        """
        if version is not None:
            for pkg in self.get_packages_by_id(package_id):
                if pkg.version == version:
                    return pkg
            return None
        candidates = self.find_packages(
            package_id, None, allow_prerelease=allow_prerelease, allow_unlisted=allow_unlisted
        )
        return candidates[-1] if candidates else None

    def exists(self, package_id: str, version: Version) -> bool:
        return self.find_package(package_id, version) is not None

    def __repr__(self):
        return f"{type(self).__name__}({self.source!r})"
