"""Package metadata.

This package provides the package model:
- dependency.py: PackageDependency and the legacy dependency string format
- descriptor.py: PackageDescriptor, dependency sets and content materialization
- manifest.py: manifest (.nuspec) reader and .nupkg manifest extraction
"""

from .dependency import PackageDependency, create_dependency, parse_dependency_string  # noqa: F401
from .descriptor import (  # noqa: F401
    DependencySet,
    FrameworkAssembly,
    MaterializeResult,
    PackageContent,
    PackageDescriptor,
)
from .manifest import (  # noqa: F401
    Manifest,
    ManifestFile,
    ManifestMetadata,
    build_package,
    read_manifest,
    read_manifest_from_package,
)

__all__ = [
    "PackageDependency",
    "create_dependency",
    "parse_dependency_string",
    "DependencySet",
    "FrameworkAssembly",
    "MaterializeResult",
    "PackageContent",
    "PackageDescriptor",
    "Manifest",
    "ManifestFile",
    "ManifestMetadata",
    "build_package",
    "read_manifest",
    "read_manifest_from_package",
]
