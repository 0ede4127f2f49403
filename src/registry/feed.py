"""Remote package feed client (OData/Atom V2 feeds) over requests."""
from __future__ import annotations

import logging
import threading
import urllib.parse
from typing import Dict, List, Optional
from xml.etree import ElementTree as ET

from common.http_client import download_bytes, robust_get
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from errors import FeedError, FormatError
from packages.dependency import parse_dependency_string
from packages.descriptor import DependencySet, PackageDescriptor
from versioning.parser import parse_version
from .base import PackageRepository

logger = logging.getLogger(__name__)

ATOM_NS = "{http://www.w3.org/2005/Atom}"
DATA_NS = "{http://schemas.microsoft.com/ado/2007/08/dataservices}"
META_NS = "{http://schemas.microsoft.com/ado/2007/08/dataservices/metadata}"

HEADERS_ATOM = {"Accept": "application/atom+xml,application/xml"}


def _prop(props: ET.Element, name: str) -> Optional[str]:
    elem = props.find(f"{DATA_NS}{name}")
    if elem is None or elem.get(f"{META_NS}null") == "true":
        return None
    return elem.text


def _prop_bool(props: ET.Element, name: str, default: bool) -> bool:
    value = _prop(props, name)
    if value is None:
        return default
    return value.strip().lower() == "true"


def _group_dependencies(deps) -> tuple:
    """Split feed dependencies into per-framework sets, preserving order."""
    groups: Dict[Optional[str], list] = {}
    for dep in deps:
        groups.setdefault(dep.target_framework, []).append(dep)
    return tuple(DependencySet(tfm, tuple(items)) for tfm, items in groups.items())


class FeedRepository(PackageRepository):
    """Read-only view of a remote feed.

    Version listings are memoized per id for the lifetime of the instance;
    payloads are only downloaded on :meth:`PackageDescriptor.materialize`.
    """

    def __init__(self, source: str, name: Optional[str] = None):
        self.source = source if source.endswith("/") else source + "/"
        self.name = name or source
        self._by_id: Dict[str, List[PackageDescriptor]] = {}
        self._lock = threading.Lock()

    def _find_packages_by_id_url(self, package_id: str) -> str:
        quoted = urllib.parse.quote(f"'{package_id}'", safe="'")
        return f"{self.source}FindPackagesById()?id={quoted}"

    def get_packages_by_id(self, package_id: str) -> List[PackageDescriptor]:
        key = package_id.lower()
        with self._lock:
            if key in self._by_id:
                return list(self._by_id[key])

        url = self._find_packages_by_id_url(package_id)
        packages: List[PackageDescriptor] = []
        while url:
            status_code, _, text = robust_get(url, headers=HEADERS_ATOM)
            if status_code == 404:
                break
            if status_code != 200:
                raise FeedError(f"{safe_url(url)} returned HTTP {status_code}")
            page, url = self._parse_feed(text)
            packages.extend(p for p in page if p.id.lower() == key)

        if is_debug_enabled(logger):
            logger.debug(
                "Feed lookup",
                extra=extra_context(
                    event="feed_lookup",
                    component="feed",
                    target=package_id,
                    source=safe_url(self.source),
                    count=len(packages),
                ),
            )
        with self._lock:
            self._by_id[key] = packages
        return list(packages)

    def _parse_feed(self, text: str):
        """Return (descriptors, next page url or None) for one Atom page."""
        try:
            root = ET.fromstring(text)
        except ET.ParseError as exc:
            raise FeedError(f"Malformed feed response from {safe_url(self.source)}: {exc}") from exc

        entries = [root] if root.tag == f"{ATOM_NS}entry" else root.findall(f"{ATOM_NS}entry")
        packages = []
        for entry in entries:
            try:
                descriptor = self._parse_entry(entry)
            except FormatError as exc:
                logger.warning("Skipping malformed feed entry from %s: %s", safe_url(self.source), exc)
                continue
            if descriptor is not None:
                packages.append(descriptor)

        next_url = None
        for link in root.findall(f"{ATOM_NS}link"):
            if link.get("rel") == "next" and link.get("href"):
                next_url = link.get("href")
        return packages, next_url

    def _parse_entry(self, entry: ET.Element) -> Optional[PackageDescriptor]:
        props = entry.find(f".//{META_NS}properties")
        if props is None:
            return None
        title = entry.find(f"{ATOM_NS}title")
        package_id = _prop(props, "Id") or (title.text if title is not None else None)
        version_text = _prop(props, "Version")
        if not package_id or not version_text:
            return None

        content = entry.find(f"{ATOM_NS}content")
        content_url = content.get("src") if content is not None else None
        authors = _prop(props, "Authors") or ""
        if not authors:
            author_name = entry.find(f"{ATOM_NS}author/{ATOM_NS}name")
            authors = author_name.text if author_name is not None and author_name.text else ""

        # Older feeds have no Listed flag; a 1900 publish date marks unlisted.
        published = _prop(props, "Published") or ""
        listed = _prop_bool(props, "Listed", not published.startswith("1900-"))

        return PackageDescriptor(
            id=package_id.strip(),
            version=parse_version(version_text),
            dependency_sets=_group_dependencies(parse_dependency_string(_prop(props, "Dependencies"))),
            authors=tuple(a.strip() for a in authors.split(",") if a.strip()),
            title=_prop(props, "Title"),
            description=_prop(props, "Description"),
            summary=_prop(props, "Summary"),
            release_notes=_prop(props, "ReleaseNotes"),
            copyright=_prop(props, "Copyright"),
            language=_prop(props, "Language"),
            tags=tuple((_prop(props, "Tags") or "").split()),
            project_url=_prop(props, "ProjectUrl"),
            license_url=_prop(props, "LicenseUrl"),
            icon_url=_prop(props, "IconUrl"),
            require_license_acceptance=_prop_bool(props, "RequireLicenseAcceptance", False),
            listed=listed,
            package_hash=_prop(props, "PackageHash"),
            package_hash_algorithm=_prop(props, "PackageHashAlgorithm"),
            source=self.source,
            downloader=self._downloader(content_url, package_id, version_text),
        )

    def _downloader(self, content_url: Optional[str], package_id: str, version: str):
        url = content_url or f"{self.source}package/{package_id}/{version}"

        def _download() -> bytes:
            logger.info("Downloading %s %s from %s", package_id, version, safe_url(url))
            return download_bytes(url, context=self.name)

        return _download
