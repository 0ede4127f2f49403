"""Persisted package reference list (``packages.config``).

The file holds one ``<package>`` element per referenced package, sorted by
id so that diffs stay stable. Every mutation is written back immediately;
callers can treat each add/remove/update as a durable commit point.
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from errors import ArgumentError, FormatError
from versioning.models import Version
from versioning.parser import parse_version

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageReference:
    id: str
    version: Version
    target_framework: Optional[str] = None
    is_development_dependency: bool = False
    require_reinstallation: bool = False

    @property
    def key(self):
        return (self.id.lower(), self.version)

    def __str__(self):
        return f"{self.id} {self.version}"


def _parse_optional_bool(value: Optional[str], attr: str, path: str) -> bool:
    if value is None or not value.strip():
        return False
    lowered = value.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise FormatError(f"Invalid '{attr}' value '{value}' in {path}")


class PackageReferenceFile:
    """Reference store backed by one XML file.

    Ids are unique (case-insensitive): adding an id that is already present
    replaces the existing entry.
    """

    def __init__(self, path: str, name: Optional[str] = None):
        self.path = path
        self.name = name or os.path.basename(os.path.dirname(os.path.abspath(path)))
        self._lock = threading.RLock()

    def __repr__(self):
        return f"PackageReferenceFile({self.path!r})"

    # -- reading ---------------------------------------------------------

    def _load(self) -> Dict[str, PackageReference]:
        if not os.path.isfile(self.path):
            return {}
        try:
            root = ET.parse(self.path).getroot()
        except ET.ParseError as exc:
            raise FormatError(f"Couldn't parse reference file {self.path}: {exc}") from exc

        entries: Dict[str, PackageReference] = {}
        for element in root.iter():
            if element.tag.split("}")[-1] != "package":
                continue
            pkg_id = (element.get("id") or "").strip()
            version_text = (element.get("version") or "").strip()
            if not pkg_id or not version_text:
                raise FormatError(f"Package entry without id or version in {self.path}")
            reference = PackageReference(
                id=pkg_id,
                version=parse_version(version_text),
                target_framework=(element.get("targetFramework") or "").strip() or None,
                is_development_dependency=_parse_optional_bool(
                    element.get("developmentDependency"), "developmentDependency", self.path
                ),
                require_reinstallation=_parse_optional_bool(
                    element.get("requireReinstallation"), "requireReinstallation", self.path
                ),
            )
            entries[pkg_id.lower()] = reference
        return entries

    def get_package_references(self) -> List[PackageReference]:
        """Return all references sorted by id."""
        with self._lock:
            return sorted(self._load().values(), key=lambda r: r.id.lower())

    def find(self, package_id: str) -> Optional[PackageReference]:
        with self._lock:
            return self._load().get(package_id.lower())

    def entry_exists(self, package_id: str, version: Version) -> bool:
        ref = self.find(package_id)
        return ref is not None and ref.version == version

    # -- writing ---------------------------------------------------------

    def _save(self, entries: Dict[str, PackageReference]) -> None:
        if not entries:
            if os.path.isfile(self.path):
                os.remove(self.path)
                logger.debug("Removed empty reference file %s", self.path)
            return

        root = ET.Element("packages")
        for ref in sorted(entries.values(), key=lambda r: r.id.lower()):
            attrs = {"id": ref.id, "version": str(ref.version)}
            if ref.target_framework:
                attrs["targetFramework"] = ref.target_framework
            if ref.is_development_dependency:
                attrs["developmentDependency"] = "true"
            if ref.require_reinstallation:
                attrs["requireReinstallation"] = "true"
            ET.SubElement(root, "package", attrs)
        ET.indent(root, space="  ")

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".packages-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                ET.ElementTree(root).write(fh, encoding="utf-8", xml_declaration=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def add_entry(
        self,
        package_id: str,
        version: Version,
        target_framework: Optional[str] = None,
        development_dependency: bool = False,
        require_reinstallation: bool = False,
    ) -> PackageReference:
        """Add or replace the entry for ``package_id`` and persist."""
        if not package_id or not package_id.strip():
            raise ArgumentError("Package id cannot be empty")
        reference = PackageReference(
            package_id.strip(), version, target_framework or None,
            development_dependency, require_reinstallation,
        )
        with self._lock:
            entries = self._load()
            entries[reference.id.lower()] = reference
            self._save(entries)
        logger.debug("Added reference %s to %s", reference, self.path)
        return reference

    def delete_entry(self, package_id: str, version: Optional[Version] = None) -> bool:
        """Remove the entry for ``package_id`` (only if ``version`` matches, when given)."""
        with self._lock:
            entries = self._load()
            current = entries.get(package_id.lower())
            if current is None or (version is not None and current.version != version):
                return False
            del entries[package_id.lower()]
            self._save(entries)
        logger.debug("Removed reference %s from %s", current, self.path)
        return True

    def update_entry(self, package_id: str, **changes) -> PackageReference:
        """Update fields of an existing entry (version, flags, framework) and persist.

        Raises:
            ArgumentError: if no entry exists for ``package_id``.
        """
        with self._lock:
            entries = self._load()
            current = entries.get(package_id.lower())
            if current is None:
                raise ArgumentError(f"No reference to '{package_id}' in {self.path}")
            updated = replace(current, **changes)
            if updated == current:
                return current
            entries[package_id.lower()] = updated
            self._save(entries)
        return updated

    def mark_for_reinstallation(self, package_id: str, required: bool = True) -> bool:
        """Set ``require_reinstallation``; returns False when there is no such entry."""
        try:
            self.update_entry(package_id, require_reinstallation=required)
        except ArgumentError:
            return False
        return True
