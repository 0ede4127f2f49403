"""Machine-wide package cache shared by every solution on this machine."""

from __future__ import annotations

import base64
import hashlib
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

from constants import Constants
from errors import ArgumentError
from packages.descriptor import PackageDescriptor
from versioning.models import Version
from versioning.parser import parse_version
from .local import LocalPackageRepository

logger = logging.getLogger(__name__)

_ALGORITHMS = {
    "SHA512": "sha512",
    "SHA256": "sha256",
    "SHA1": "sha1",
}


class HashProvider:
    """Computes base64-encoded content hashes of package payloads."""

    def __init__(self, algorithm: str = Constants.HASH_ALGORITHM):
        self.algorithm = self._normalize(algorithm)

    @staticmethod
    def _normalize(algorithm: Optional[str]) -> str:
        name = (algorithm or Constants.HASH_ALGORITHM).replace("-", "").upper()
        if name not in _ALGORITHMS:
            raise ArgumentError(f"Unsupported hash algorithm '{algorithm}'")
        return name

    def compute(self, payload: bytes, algorithm: Optional[str] = None) -> str:
        name = self._normalize(algorithm) if algorithm else self.algorithm
        digest = hashlib.new(_ALGORITHMS[name], payload).digest()
        return base64.b64encode(digest).decode("ascii")

    def matches(self, payload: bytes, expected: str, algorithm: Optional[str] = None) -> bool:
        # Feeds publish base64; some mirrors publish hex.
        actual = self.compute(payload, algorithm)
        if actual == expected:
            return True
        name = self._normalize(algorithm) if algorithm else self.algorithm
        return hashlib.new(_ALGORITHMS[name], payload).hexdigest().lower() == expected.strip().lower()


class MachineCache(LocalPackageRepository):
    """Flat package store with per-package locking.

    Operations on one (id, version) are serialized; different packages can be
    added or removed concurrently.
    """

    def __init__(self, root: Optional[str] = None, hash_provider: Optional[HashProvider] = None):
        super().__init__(root or Constants.MACHINE_CACHE_DIR, flat=True)
        self.hash_provider = hash_provider or HashProvider()
        # (id, Version) -> [lock, users]; entries are dropped once unused
        self._locks: Dict[Tuple[str, Version], list] = {}
        self._locks_guard = threading.Lock()

    @staticmethod
    def _lock_key(package_id: str, version) -> Tuple[str, Version]:
        if not isinstance(version, Version):
            version = parse_version(str(version))
        return package_id.lower(), version

    @contextmanager
    def locked(self, package_id: str, version) -> Iterator[None]:
        """Hold the lock for one package across a read-verify-write sequence.

        Equal versions share a lock whatever their spelling (``1.0`` and
        ``1.0.0``).
        """
        key = self._lock_key(package_id, version)
        with self._locks_guard:
            slot = self._locks.setdefault(key, [threading.RLock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[key]

    def find_package(self, package_id: str, version: Optional[Version] = None,
                     allow_prerelease: bool = True, allow_unlisted: bool = False):
        if version is None:
            return super().find_package(package_id, None, allow_prerelease, allow_unlisted)
        with self.locked(package_id, version):
            return super().find_package(package_id, version)

    def add_package(self, descriptor: PackageDescriptor, payload: bytes) -> PackageDescriptor:
        with self.locked(descriptor.id, descriptor.version):
            stored = super().add_package(descriptor, payload)
        logger.info("Added %s to the machine cache", descriptor)
        return stored

    def remove_package(self, descriptor: PackageDescriptor) -> bool:
        with self.locked(descriptor.id, descriptor.version):
            removed = super().remove_package(descriptor)
        if removed:
            logger.info("Removed %s from the machine cache", descriptor)
        return removed

    def get_hash(self, descriptor: PackageDescriptor, algorithm: Optional[str] = None) -> Optional[str]:
        """Hash of the cached payload for ``descriptor``, or None if not cached."""
        payload = self.read_payload(descriptor)
        if payload is None:
            return None
        return self.hash_provider.compute(payload, algorithm)
