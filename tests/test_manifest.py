"""Tests for manifest reading and package descriptors."""

import io
import zipfile

import pytest

from errors import FormatError
from packages.descriptor import DependencySet, PackageDescriptor
from packages.dependency import PackageDependency
from packages.manifest import build_package, read_manifest, read_manifest_from_package
from versioning.parser import parse_version

from conftest import make_payload

FULL_MANIFEST = """<?xml version="1.0"?>
<package xmlns="http://schemas.microsoft.com/packaging/2011/08/nuspec.xsd">
  <metadata>
    <id>Contoso.Utilities</id>
    <version>1.2.3-beta</version>
    <title>Contoso Utilities</title>
    <authors>Alice, Bob</authors>
    <owners>Contoso</owners>
    <description>Helpers.</description>
    <summary>Short.</summary>
    <releaseNotes>Fixes.</releaseNotes>
    <copyright>2011</copyright>
    <language>en-US</language>
    <tags>util  helpers</tags>
    <projectUrl>http://example.org/</projectUrl>
    <licenseUrl>http://example.org/license</licenseUrl>
    <iconUrl>http://example.org/icon.png</iconUrl>
    <requireLicenseAcceptance>true</requireLicenseAcceptance>
    <dependencies>
      <group targetFramework="net40">
        <dependency id="Json" version="[1.0,2.0)" />
      </group>
      <group>
        <dependency id="Logging" />
      </group>
    </dependencies>
    <frameworkAssemblies>
      <frameworkAssembly assemblyName="System.Xml" targetFramework="net40" />
    </frameworkAssemblies>
    <references>
      <reference file="Contoso.dll" />
    </references>
  </metadata>
  <files>
    <file src="bin\\a.dll;bin\\b.dll" target="lib\\net40" exclude="**\\*.pdb" />
    <file src="readme.txt" />
  </files>
</package>
"""


def _manifest(dependencies_xml: str) -> str:
    return (
        "<package><metadata><id>A</id><version>1.0</version><authors>x</authors>"
        f"<description>d</description><dependencies>{dependencies_xml}</dependencies>"
        "</metadata></package>"
    )


class TestReadManifest:
    """Metadata, dependency sets and file entries."""

    def test_reads_metadata(self):
        """Scalar fields, comma-split authors and whitespace-split tags."""
        md = read_manifest(FULL_MANIFEST).metadata
        assert md.id == "Contoso.Utilities"
        assert md.version == parse_version("1.2.3-beta")
        assert md.authors == ("Alice", "Bob")
        assert md.owners == ("Contoso",)
        assert md.tags == ("util", "helpers")
        assert md.require_license_acceptance is True
        assert md.release_notes == "Fixes."
        assert md.framework_assemblies[0].assembly_name == "System.Xml"
        assert md.references == ("Contoso.dll",)

    def test_reads_dependency_groups(self):
        md = read_manifest(FULL_MANIFEST).metadata
        frameworks = [s.target_framework for s in md.dependency_sets]
        assert frameworks == ["net40", None]
        assert md.dependency_sets[0].dependencies[0].satisfies(parse_version("1.5"))

    def test_expands_multi_source_files(self):
        """A separated src attribute yields one entry per source."""
        files = read_manifest(FULL_MANIFEST).files
        assert [f.source for f in files] == ["bin\\a.dll", "bin\\b.dll", "readme.txt"]
        assert files[0].target == files[1].target == "lib\\net40"
        assert files[1].exclude == "**\\*.pdb"
        assert files[2].target is None

    def test_no_files_element(self):
        assert read_manifest(_manifest("")).files is None

    def test_mixed_dependency_elements(self):
        """Flat dependencies next to groups are rejected."""
        xml = _manifest('<dependency id="B" /><group><dependency id="C" /></group>')
        with pytest.raises(FormatError, match="mixed dependency elements"):
            read_manifest(xml)

    def test_duplicate_dependency_names_id(self):
        xml = _manifest('<dependency id="X" version="1.0" /><dependency id="x" version="2.0" />')
        with pytest.raises(FormatError, match="Duplicate dependency 'x'"):
            read_manifest(xml)

    def test_duplicate_in_group(self):
        xml = _manifest('<group targetFramework="net40"><dependency id="X" /><dependency id="X" /></group>')
        with pytest.raises(FormatError, match="'X'"):
            read_manifest(xml)

    @pytest.mark.parametrize("xml", [
        "<package></package>",
        "<package><metadata><version>1.0</version></metadata></package>",
        "<package><metadata><id>A</id></metadata></package>",
        "<package><metadata><id>A</id><version>one</version></metadata></package>",
        "<package><metadata>",
    ])
    def test_invalid_manifests(self, xml):
        with pytest.raises(FormatError):
            read_manifest(xml)

    def test_invalid_dependency_range(self):
        with pytest.raises(FormatError):
            read_manifest(_manifest('<dependency id="B" version="[2.0,1.0]" />'))

    def test_reads_from_path(self, tmp_path):
        path = tmp_path / "A.nuspec"
        path.write_text(_manifest(""), encoding="utf-8")
        assert read_manifest(str(path)).metadata.id == "A"


class TestPackageArchive:
    """Manifests inside .nupkg archives."""

    def test_round_trip_through_archive(self):
        payload = build_package(FULL_MANIFEST, {"lib/net40/Contoso.dll": b"MZ"})
        assert read_manifest_from_package(payload).metadata.id == "Contoso.Utilities"

    def test_not_an_archive(self):
        with pytest.raises(FormatError):
            read_manifest_from_package(b"not a zip")

    def test_archive_without_manifest(self):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("lib/a.dll", b"MZ")
        with pytest.raises(FormatError, match="manifest"):
            read_manifest_from_package(buffer.getvalue())


class TestPackageDescriptor:
    """Descriptor identity, framework selection and materialization."""

    def test_identity_is_id_and_version(self):
        a = PackageDescriptor("A", parse_version("1.0"), title="one")
        b = PackageDescriptor("a", parse_version("1.0.0"), title="two")
        assert a == b
        assert hash(a) == hash(b)
        assert a != PackageDescriptor("A", parse_version("1.1"))

    def test_dependencies_for_framework(self):
        descriptor = PackageDescriptor.from_manifest(read_manifest(FULL_MANIFEST))
        assert [d.id for d in descriptor.dependencies_for("NET40")] == ["Json"]
        assert [d.id for d in descriptor.dependencies_for("sl4")] == ["Logging"]
        assert [d.id for d in descriptor.dependencies] == ["Logging"]

    def test_grouped_only_union(self):
        """Without a framework-agnostic set, all groups contribute once."""
        descriptor = PackageDescriptor(
            "A", parse_version("1.0"),
            dependency_sets=(
                DependencySet("net40", (PackageDependency("X"), PackageDependency("Y"))),
                DependencySet("sl4", (PackageDependency("x"), PackageDependency("Z"))),
            ),
        )
        assert [d.id for d in descriptor.dependencies_for(None)] == ["X", "Y", "Z"]

    def test_dependency_set_rejects_duplicates(self):
        with pytest.raises(FormatError, match="'dup'"):
            DependencySet(None, (PackageDependency("Dup"), PackageDependency("dup")))

    def test_materialize_lists_files(self):
        payload = make_payload("A", "1.0")
        descriptor = PackageDescriptor("A", parse_version("1.0"), downloader=lambda: payload)
        result = descriptor.materialize()
        assert result.ok
        assert result.content.payload == payload
        assert result.content.files == ("lib/net40/A.dll",)

    def test_materialize_captures_errors(self):
        def boom():
            raise OSError("offline")

        result = PackageDescriptor("A", parse_version("1.0"), downloader=boom).materialize()
        assert not result.ok
        assert isinstance(result.error, OSError)

    def test_materialize_without_source(self):
        result = PackageDescriptor("A", parse_version("1.0")).materialize()
        assert isinstance(result.error, FormatError)

    def test_prerelease_flag(self):
        assert PackageDescriptor("A", parse_version("1.0-rc")).is_prerelease
