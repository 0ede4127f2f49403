"""Shared fixtures: package payload builders and an in-memory repository."""

import os
from typing import Dict, List, Optional

import pytest

from common.http_client import clear_cache
from constants import Constants
from packages.descriptor import DependencySet, PackageDescriptor
from packages.dependency import PackageDependency
from packages.manifest import build_package
from registry.base import PackageRepository
from registry.cache import HashProvider
from versioning.parser import parse_version, parse_version_spec


def nuspec(package_id: str, version: str, dependencies: Optional[Dict[str, str]] = None) -> str:
    """Minimal manifest XML; ``dependencies`` maps id -> version spec text."""
    deps = ""
    if dependencies:
        items = "".join(
            f'<dependency id="{dep_id}" version="{spec}" />' if spec else f'<dependency id="{dep_id}" />'
            for dep_id, spec in dependencies.items()
        )
        deps = f"<dependencies>{items}</dependencies>"
    return (
        '<?xml version="1.0"?>'
        '<package xmlns="http://schemas.microsoft.com/packaging/2010/07/nuspec.xsd">'
        f"<metadata><id>{package_id}</id><version>{version}</version>"
        f"<authors>tester</authors><description>{package_id} package</description>{deps}</metadata>"
        "</package>"
    )


def make_payload(package_id: str, version: str, dependencies: Optional[Dict[str, str]] = None,
                 marker: str = "") -> bytes:
    """A ``.nupkg`` archive; ``marker`` changes the content (and so the hash)."""
    return build_package(
        nuspec(package_id, version, dependencies),
        {"lib/net40/" + package_id + ".dll": (package_id + version + marker).encode()},
    )


class InMemoryRepository(PackageRepository):
    """Remote-like repository whose descriptors download from memory."""

    def __init__(self, source: str = "memory://feed"):
        self.source = source
        self.packages: List[PackageDescriptor] = []
        self.downloads: List[str] = []
        self.broken = set()

    def add(self, package_id, version, dependencies=None, listed=True, payload=None,
            advertise_hash=True, package_hash=None):
        payload = payload if payload is not None else make_payload(package_id, version, dependencies)
        deps = tuple(
            PackageDependency(dep_id, parse_version_spec(spec) if spec else None)
            for dep_id, spec in (dependencies or {}).items()
        )
        if package_hash is None and advertise_hash:
            package_hash = HashProvider().compute(payload)
        key = f"{package_id.lower()}/{version}"

        def download(key=key, payload=payload):
            self.downloads.append(key)
            if key in self.broken:
                raise OSError(f"download of {key} failed")
            return payload

        descriptor = PackageDescriptor(
            id=package_id,
            version=parse_version(version),
            dependency_sets=(DependencySet(None, deps),) if deps else (),
            listed=listed,
            package_hash=package_hash,
            package_hash_algorithm="SHA512" if package_hash else None,
            source=self.source,
            downloader=download,
        )
        self.packages.append(descriptor)
        return descriptor

    def get_packages_by_id(self, package_id):
        return [p for p in self.packages if p.id.lower() == package_id.lower()]


def write_references(path, entries):
    """Write a packages.config with (id, version[, attrs]) entries."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    lines = ['<?xml version="1.0" encoding="utf-8"?>', "<packages>"]
    for entry in entries:
        attrs = dict(entry[2]) if len(entry) > 2 else {}
        extra = "".join(f' {k}="{v}"' for k, v in attrs.items())
        lines.append(f'  <package id="{entry[0]}" version="{entry[1]}"{extra} />')
    lines.append("</packages>")
    with open(path, "w", encoding="utf-8") as fh:
        fh.write("\n".join(lines))


@pytest.fixture
def remote():
    return InMemoryRepository()


@pytest.fixture(autouse=True)
def _isolated_constants(tmp_path):
    """Restore configuration constants and drop the HTTP cache after each test."""
    saved = {k: v for k, v in vars(Constants).items() if k.isupper()}
    Constants.MACHINE_CACHE_DIR = str(tmp_path / "machine-cache")
    clear_cache()
    yield
    for key, value in saved.items():
        setattr(Constants, key, value)
    clear_cache()
