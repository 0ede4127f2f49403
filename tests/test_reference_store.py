"""Tests for the packages.config reference store."""

import xml.etree.ElementTree as ET

import pytest

from errors import ArgumentError, FormatError
from references.store import PackageReferenceFile
from versioning.parser import parse_version

from conftest import write_references


def _ids_on_disk(path):
    return [e.get("id") for e in ET.parse(path).getroot().findall("package")]


class TestReading:
    """Parsing existing reference files."""

    def test_missing_file_is_empty(self, tmp_path):
        store = PackageReferenceFile(str(tmp_path / "packages.config"))
        assert store.get_package_references() == []

    def test_reads_attributes(self, tmp_path):
        path = tmp_path / "App" / "packages.config"
        write_references(str(path), [
            ("jQuery", "1.6.4", {"targetFramework": "net40", "requireReinstallation": "True"}),
            ("Moq", "4.0", {"developmentDependency": "true"}),
        ])
        store = PackageReferenceFile(str(path))
        assert store.name == "App"
        jquery, moq = store.get_package_references()
        assert jquery.version == parse_version("1.6.4")
        assert jquery.target_framework == "net40"
        assert jquery.require_reinstallation is True
        assert moq.is_development_dependency is True
        assert moq.require_reinstallation is False

    def test_references_sorted_by_id(self, tmp_path):
        path = tmp_path / "packages.config"
        write_references(str(path), [("zeta", "1.0"), ("Alpha", "1.0"), ("beta", "1.0")])
        ids = [r.id for r in PackageReferenceFile(str(path)).get_package_references()]
        assert ids == ["Alpha", "beta", "zeta"]

    def test_malformed_xml(self, tmp_path):
        path = tmp_path / "packages.config"
        path.write_text("<packages><package id=", encoding="utf-8")
        with pytest.raises(FormatError):
            PackageReferenceFile(str(path)).get_package_references()

    @pytest.mark.parametrize("entry", [
        ("A", "not-a-version"),
        ("A", "1.0", {"requireReinstallation": "maybe"}),
    ])
    def test_invalid_entries(self, tmp_path, entry):
        path = tmp_path / "packages.config"
        write_references(str(path), [entry])
        with pytest.raises(FormatError):
            PackageReferenceFile(str(path)).get_package_references()


class TestMutations:
    """Every mutation is persisted immediately and the file stays sorted."""

    def test_add_persists_sorted(self, tmp_path):
        path = str(tmp_path / "packages.config")
        store = PackageReferenceFile(path)
        store.add_entry("b", parse_version("1.0"))
        store.add_entry("A", parse_version("2.0"), target_framework="net45")
        assert _ids_on_disk(path) == ["A", "b"]
        reopened = PackageReferenceFile(path)
        assert reopened.find("a").target_framework == "net45"
        assert reopened.entry_exists("B", parse_version("1.0"))

    def test_add_replaces_same_id(self, tmp_path):
        store = PackageReferenceFile(str(tmp_path / "packages.config"))
        store.add_entry("A", parse_version("1.0"))
        store.add_entry("a", parse_version("2.0"))
        references = store.get_package_references()
        assert len(references) == 1
        assert references[0].version == parse_version("2.0")

    def test_add_rejects_empty_id(self, tmp_path):
        store = PackageReferenceFile(str(tmp_path / "packages.config"))
        with pytest.raises(ArgumentError):
            store.add_entry(" ", parse_version("1.0"))

    def test_delete_entry(self, tmp_path):
        path = tmp_path / "packages.config"
        store = PackageReferenceFile(str(path))
        store.add_entry("A", parse_version("1.0"))
        store.add_entry("B", parse_version("1.0"))
        assert not store.delete_entry("A", parse_version("9.9"))
        assert store.delete_entry("a")
        assert [r.id for r in store.get_package_references()] == ["B"]
        assert store.delete_entry("B")
        assert not path.exists()

    def test_update_and_mark_for_reinstallation(self, tmp_path):
        store = PackageReferenceFile(str(tmp_path / "packages.config"))
        store.add_entry("A", parse_version("1.0"))
        assert store.mark_for_reinstallation("A")
        assert store.find("A").require_reinstallation is True
        store.update_entry("A", version=parse_version("1.1"), require_reinstallation=False)
        reference = PackageReferenceFile(store.path).find("A")
        assert reference.version == parse_version("1.1")
        assert reference.require_reinstallation is False
        assert not store.mark_for_reinstallation("missing")

    def test_update_missing_entry(self, tmp_path):
        store = PackageReferenceFile(str(tmp_path / "packages.config"))
        with pytest.raises(ArgumentError):
            store.update_entry("A", version=parse_version("1.0"))

    def test_no_temp_files_left_behind(self, tmp_path):
        store = PackageReferenceFile(str(tmp_path / "packages.config"))
        store.add_entry("A", parse_version("1.0"))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["packages.config"]
