"""Manifest (``.nuspec``) reader.

Element matching ignores XML namespaces so that every schema revision of
the manifest format is read the same way.
"""
from __future__ import annotations

import io
import logging
import os
import zipfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple, Union

from constants import Constants
from errors import FormatError
from versioning.models import Version
from versioning.parser import parse_version, parse_version_spec
from .dependency import PackageDependency
from .descriptor import DependencySet, FrameworkAssembly

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManifestFile:
    source: str
    target: Optional[str] = None
    exclude: Optional[str] = None


@dataclass(frozen=True)
class ManifestMetadata:
    id: str
    version: Version
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
    dependency_sets: Tuple[DependencySet, ...] = ()
    framework_assemblies: Tuple[FrameworkAssembly, ...] = ()
    references: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Manifest:
    metadata: ManifestMetadata
    files: Optional[Tuple[ManifestFile, ...]] = None


def _local(tag: str) -> str:
    """Strip the ``{namespace}`` prefix from an element tag."""
    return tag.split("}", 1)[1] if "}" in tag else tag


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _attr(element: ET.Element, name: str) -> Optional[str]:
    value = element.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _split_list(value: Optional[str], sep: str = ",") -> Tuple[str, ...]:
    if not value:
        return ()
    if sep == " ":
        return tuple(value.split())
    return tuple(p.strip() for p in value.split(sep) if p.strip())


def _parse_bool(value: str) -> bool:
    # xs:boolean lexical space
    lowered = value.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise FormatError(f"'{value}' is not a valid boolean value")


def _read_dependencies(container: ET.Element) -> Tuple[PackageDependency, ...]:
    deps: List[PackageDependency] = []
    seen = set()
    for element in _children(container, "dependency"):
        dep_id = _attr(element, "id")
        if not dep_id:
            raise FormatError("Dependency element is missing the 'id' attribute")
        if dep_id.lower() in seen:
            raise FormatError(f"Duplicate dependency '{dep_id}' in dependency set")
        seen.add(dep_id.lower())
        version_text = _attr(element, "version")
        spec = parse_version_spec(version_text) if version_text else None
        deps.append(PackageDependency(dep_id, spec))
    return tuple(deps)


def _read_dependency_sets(element: ET.Element) -> Tuple[DependencySet, ...]:
    has_flat = bool(_children(element, "dependency"))
    groups = _children(element, "group")
    if has_flat and groups:
        raise FormatError(
            "The <dependencies> element cannot contain mixed dependency elements: "
            "use either <dependency> or <group> children"
        )
    if has_flat:
        return (DependencySet(None, _read_dependencies(element)),)
    return tuple(
        DependencySet(_attr(group, "targetFramework"), _read_dependencies(group))
        for group in groups
    )


def _read_framework_assemblies(element: ET.Element) -> Tuple[FrameworkAssembly, ...]:
    return tuple(
        FrameworkAssembly(_attr(child, "assemblyName") or "", _attr(child, "targetFramework"))
        for child in element
    )


def _read_references(element: ET.Element) -> Tuple[str, ...]:
    return tuple(f for f in (_attr(child, "file") for child in element) if f)


def _read_metadata(element: ET.Element) -> ManifestMetadata:
    values = {}
    for child in element:
        name = _local(child.tag)
        text = (child.text or "").strip()
        if name == "dependencies":
            values["dependency_sets"] = _read_dependency_sets(child)
        elif name == "frameworkAssemblies":
            values["framework_assemblies"] = _read_framework_assemblies(child)
        elif name == "references":
            values["references"] = _read_references(child)
        elif name in ("authors", "owners"):
            values[name] = _split_list(text)
        elif name == "tags":
            values["tags"] = _split_list(text, " ")
        elif name == "requireLicenseAcceptance":
            values["require_license_acceptance"] = _parse_bool(text) if text else False
        elif name in _SCALAR_FIELDS and text:
            values[_SCALAR_FIELDS[name]] = text

    if not values.get("id"):
        raise FormatError("Manifest metadata is missing the required 'id' element")
    if not values.get("version"):
        raise FormatError(f"Manifest for '{values['id']}' is missing the required 'version' element")
    values["version"] = parse_version(values["version"])
    return ManifestMetadata(**values)


_SCALAR_FIELDS = {
    "id": "id",
    "version": "version",
    "title": "title",
    "description": "description",
    "summary": "summary",
    "releaseNotes": "release_notes",
    "copyright": "copyright",
    "language": "language",
    "projectUrl": "project_url",
    "licenseUrl": "license_url",
    "iconUrl": "icon_url",
}


def _read_files(element: Optional[ET.Element]) -> Optional[Tuple[ManifestFile, ...]]:
    if element is None:
        return None
    files: List[ManifestFile] = []
    for entry in element:
        target = _attr(entry, "target")
        exclude = _attr(entry, "exclude")
        # Multiple sources can be given as separated values.
        raw = (entry.get("src") or "").replace(",", ";")
        for source in raw.strip(";").split(";"):
            source = source.strip()
            if source:
                files.append(ManifestFile(source, target, exclude))
    return tuple(files)


def read_manifest(source: Union[str, bytes, BinaryIO]) -> Manifest:
    """Parse a manifest from a path, raw bytes/text, or a binary file object.

    Raises:
        FormatError: on malformed XML or invalid manifest content.
    """
    try:
        if isinstance(source, bytes):
            root = ET.fromstring(source)
        elif isinstance(source, str) and source.lstrip().startswith("<"):
            root = ET.fromstring(source)
        else:
            root = ET.parse(source).getroot()
    except ET.ParseError as exc:
        raise FormatError(f"Manifest is not well-formed XML: {exc}") from exc

    metadata = next(iter(_children(root, "metadata")), None)
    if metadata is None:
        raise FormatError("Manifest is missing the required 'metadata' element")
    files = next(iter(_children(root, "files")), None)
    return Manifest(metadata=_read_metadata(metadata), files=_read_files(files))


def read_manifest_from_package(payload: bytes) -> Manifest:
    """Read the manifest stored at the root of a ``.nupkg`` archive.

    Raises:
        FormatError: if the archive is invalid or carries no manifest.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            names = [
                n for n in archive.namelist()
                if "/" not in n and n.lower().endswith(Constants.MANIFEST_EXTENSION)
            ]
            if not names:
                raise FormatError("Package archive does not contain a manifest")
            data = archive.read(names[0])
    except zipfile.BadZipFile as exc:
        raise FormatError(f"Package payload is not a valid archive: {exc}") from exc
    return read_manifest(data)


def build_package(manifest_xml: str, files: Optional[dict] = None) -> bytes:
    """Create a ``.nupkg`` payload from manifest text and a {name: bytes} map."""
    manifest = read_manifest(manifest_xml)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(manifest.metadata.id + Constants.MANIFEST_EXTENSION, manifest_xml)
        for name, data in (files or {}).items():
            archive.writestr(name.replace(os.sep, "/"), data)
    return buffer.getvalue()
