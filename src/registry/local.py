"""On-disk package repository holding ``.nupkg`` files."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from glob import glob
from typing import Dict, List, Optional, Tuple

from constants import Constants
from errors import FormatError
from packages.descriptor import PackageDescriptor
from packages.manifest import read_manifest_from_package
from versioning.models import Version
from .base import PackageRepository

logger = logging.getLogger(__name__)


def package_file_name(package_id: str, version) -> str:
    """``<Id>.<Version>.nupkg``"""
    return f"{package_id}.{version}{Constants.PACKAGE_EXTENSION}"


class LocalPackageRepository(PackageRepository):
    """Packages stored under a root directory.

    Side-by-side layout (the solution ``packages`` folder) keeps each package
    in ``<root>/<Id>.<Version>/<Id>.<Version>.nupkg``; the flat layout (machine
    cache, folder feeds) keeps ``<root>/<Id>.<Version>.nupkg``.
    """

    def __init__(self, root: str, flat: bool = False):
        self.root = os.path.abspath(root)
        self.source = self.root
        self.flat = flat
        # path -> (mtime, descriptor); avoids reopening unchanged archives
        self._manifest_cache: Dict[str, Tuple[float, PackageDescriptor]] = {}

    def package_path(self, package_id: str, version) -> str:
        name = package_file_name(package_id, version)
        if self.flat:
            return os.path.join(self.root, name)
        return os.path.join(self.root, f"{package_id}.{version}", name)

    def _package_files(self) -> List[str]:
        if not os.path.isdir(self.root):
            return []
        pattern = "*" + Constants.PACKAGE_EXTENSION
        if not self.flat:
            pattern = os.path.join("*", pattern)
        return sorted(glob(os.path.join(self.root, pattern)))

    def _read_descriptor(self, path: str) -> Optional[PackageDescriptor]:
        try:
            mtime = os.path.getmtime(path)
        except OSError:
            return None
        cached = self._manifest_cache.get(path)
        if cached is not None and cached[0] == mtime:
            return cached[1]
        try:
            with open(path, "rb") as fh:
                manifest = read_manifest_from_package(fh.read())
        except (OSError, FormatError) as e:
            logger.warning("Couldn't read package %s: %s", path, e)
            return None
        descriptor = PackageDescriptor.from_manifest(
            manifest, source=self.source, downloader=lambda p=path: _read_bytes(p)
        )
        self._manifest_cache[path] = (mtime, descriptor)
        return descriptor

    def get_packages(self) -> List[PackageDescriptor]:
        packages = []
        for path in self._package_files():
            descriptor = self._read_descriptor(path)
            if descriptor is not None:
                packages.append(descriptor)
        return packages

    def get_packages_by_id(self, package_id: str) -> List[PackageDescriptor]:
        prefix = package_id.lower() + "."
        result = []
        for path in self._package_files():
            if not os.path.basename(path).lower().startswith(prefix):
                continue
            descriptor = self._read_descriptor(path)
            if descriptor is not None and descriptor.id.lower() == package_id.lower():
                result.append(descriptor)
        return result

    def find_package(self, package_id: str, version: Optional[Version] = None,
                     allow_prerelease: bool = True, allow_unlisted: bool = False):
        if version is not None:
            path = self.package_path(package_id, version)
            if os.path.isfile(path):
                descriptor = self._read_descriptor(path)
                if descriptor is not None and descriptor.version == version:
                    return descriptor
        return super().find_package(package_id, version, allow_prerelease, allow_unlisted)

    def add_package(self, descriptor: PackageDescriptor, payload: bytes) -> PackageDescriptor:
        """Write ``payload`` for ``descriptor`` and return the stored descriptor."""
        path = self.package_path(descriptor.id, descriptor.version)
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        self._manifest_cache.pop(path, None)
        logger.debug("Stored %s at %s", descriptor, path)
        stored = self._read_descriptor(path)
        if stored is None:
            raise FormatError(f"Stored package {descriptor} could not be read back")
        return stored

    def remove_package(self, descriptor: PackageDescriptor) -> bool:
        path = self.package_path(descriptor.id, descriptor.version)
        if not os.path.isfile(path):
            return False
        self._manifest_cache.pop(path, None)
        if self.flat:
            os.remove(path)
        else:
            shutil.rmtree(os.path.dirname(path), ignore_errors=True)
        logger.debug("Removed %s from %s", descriptor, self.root)
        return True

    def read_payload(self, descriptor: PackageDescriptor) -> Optional[bytes]:
        path = self.package_path(descriptor.id, descriptor.version)
        if not os.path.isfile(path):
            return None
        return _read_bytes(path)


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()
