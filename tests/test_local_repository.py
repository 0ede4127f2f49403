"""Tests for on-disk repositories, the machine cache and payload hashing."""

import base64
import hashlib
import os
import threading

import pytest

from errors import ArgumentError
from packages.descriptor import PackageDescriptor
from packages.manifest import read_manifest_from_package
from registry.cache import HashProvider, MachineCache
from registry.local import LocalPackageRepository, package_file_name
from versioning.parser import parse_version, parse_version_spec

from conftest import make_payload


def _descriptor(payload):
    return PackageDescriptor.from_manifest(read_manifest_from_package(payload))


def _store(repo, package_id, version, **kwargs):
    payload = make_payload(package_id, version, **kwargs)
    return repo.add_package(_descriptor(payload), payload)


class TestLocalPackageRepository:
    """Side-by-side and flat layouts."""

    def test_side_by_side_layout(self, tmp_path):
        repo = LocalPackageRepository(str(tmp_path))
        _store(repo, "A", "1.0")
        expected = tmp_path / "A.1.0" / "A.1.0.nupkg"
        assert expected.is_file()
        assert repo.package_path("A", "1.0") == str(expected)

    def test_flat_layout(self, tmp_path):
        repo = LocalPackageRepository(str(tmp_path), flat=True)
        _store(repo, "A", "1.0")
        assert (tmp_path / package_file_name("A", "1.0")).is_file()

    def test_find_and_exists(self, tmp_path):
        repo = LocalPackageRepository(str(tmp_path))
        for version in ("1.0", "1.5", "2.0-beta"):
            _store(repo, "A", version)
        _store(repo, "AB", "1.0")
        assert repo.exists("a", parse_version("1.5"))
        assert not repo.exists("A", parse_version("3.0"))
        assert [str(p.version) for p in repo.get_packages_by_id("A")] == ["1.0", "1.5", "2.0-beta"]
        assert repo.find_package("A").version == parse_version("2.0-beta")
        assert repo.find_package("A", allow_prerelease=False).version == parse_version("1.5")

    def test_find_packages_in_range_ascending(self, tmp_path):
        repo = LocalPackageRepository(str(tmp_path))
        for version in ("2.0", "1.0", "1.5"):
            _store(repo, "A", version)
        found = repo.find_packages("A", parse_version_spec("[1.0,2.0)"))
        assert [str(p.version) for p in found] == ["1.0", "1.5"]

    def test_stored_descriptor_materializes(self, tmp_path):
        repo = LocalPackageRepository(str(tmp_path))
        stored = _store(repo, "A", "1.0", dependencies={"B": "[1.0,)"})
        assert stored.source == str(tmp_path)
        assert [d.id for d in stored.dependencies] == ["B"]
        assert stored.materialize().ok

    def test_remove_package(self, tmp_path):
        repo = LocalPackageRepository(str(tmp_path))
        stored = _store(repo, "A", "1.0")
        assert repo.remove_package(stored)
        assert not (tmp_path / "A.1.0").exists()
        assert not repo.remove_package(stored)

    def test_unreadable_archive_is_skipped(self, tmp_path):
        repo = LocalPackageRepository(str(tmp_path), flat=True)
        (tmp_path / "Broken.1.0.nupkg").write_bytes(b"garbage")
        _store(repo, "Good", "1.0")
        assert [p.id for p in repo.get_packages()] == ["Good"]

    def test_missing_root(self, tmp_path):
        repo = LocalPackageRepository(str(tmp_path / "nope"))
        assert repo.get_packages() == []
        assert repo.find_package("A") is None


class TestHashProvider:
    """Base64 content digests."""

    def test_sha512_base64(self):
        expected = base64.b64encode(hashlib.sha512(b"payload").digest()).decode()
        assert HashProvider().compute(b"payload") == expected

    def test_other_algorithm(self):
        provider = HashProvider()
        expected = base64.b64encode(hashlib.sha256(b"x").digest()).decode()
        assert provider.compute(b"x", "SHA256") == expected

    def test_matches_hex_or_base64(self):
        provider = HashProvider()
        assert provider.matches(b"x", provider.compute(b"x"))
        assert provider.matches(b"x", hashlib.sha512(b"x").hexdigest().upper())
        assert not provider.matches(b"x", provider.compute(b"y"))

    def test_unknown_algorithm(self):
        with pytest.raises(ArgumentError):
            HashProvider("MD4")


class TestMachineCache:
    """Flat cache with per-package locking."""

    def test_add_find_remove(self, tmp_path):
        cache = MachineCache(str(tmp_path))
        stored = _store(cache, "A", "1.0")
        assert os.path.isfile(tmp_path / "A.1.0.nupkg")
        assert cache.find_package("A", parse_version("1.0")) == stored
        assert cache.remove_package(stored)
        assert cache.find_package("A", parse_version("1.0")) is None

    def test_get_hash(self, tmp_path):
        cache = MachineCache(str(tmp_path))
        payload = make_payload("A", "1.0")
        stored = cache.add_package(_descriptor(payload), payload)
        assert cache.get_hash(stored) == HashProvider().compute(payload)
        assert cache.get_hash(PackageDescriptor("Z", parse_version("1.0"))) is None

    def test_lock_is_reentrant_per_package(self, tmp_path):
        cache = MachineCache(str(tmp_path))
        with cache.locked("A", "1.0"):
            _store(cache, "A", "1.0")
            assert cache.find_package("A", parse_version("1.0")) is not None

    def test_lock_blocks_other_threads_for_same_package(self, tmp_path):
        cache = MachineCache(str(tmp_path))
        acquired = threading.Event()

        def other():
            with cache.locked("a", "1.0"):
                acquired.set()

        with cache.locked("A", "1.0"):
            worker = threading.Thread(target=other)
            worker.start()
            assert not acquired.wait(0.2)
        worker.join(2)
        assert acquired.is_set()

    def test_equal_versions_share_a_lock(self, tmp_path):
        cache = MachineCache(str(tmp_path))
        acquired = threading.Event()

        def other():
            with cache.locked("a", "1.0.0"):
                acquired.set()

        with cache.locked("A", parse_version("1.0")):
            worker = threading.Thread(target=other)
            worker.start()
            assert not acquired.wait(0.2)
        worker.join(2)
        assert acquired.is_set()

    def test_unused_locks_are_dropped(self, tmp_path):
        cache = MachineCache(str(tmp_path))
        for version in ("1.0", "1.1", "1.2"):
            _store(cache, "A", version)
        with cache.locked("A", "1.0"):
            assert len(cache._locks) == 1
        assert cache._locks == {}

    def test_defaults_to_configured_directory(self, tmp_path):
        from constants import Constants
        assert MachineCache().root == os.path.abspath(Constants.MACHINE_CACHE_DIR)
