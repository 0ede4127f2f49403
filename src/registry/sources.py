"""Configured package sources and the repositories built from them."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from constants import Constants
from .base import PackageRepository
from .feed import FeedRepository
from .local import LocalPackageRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageSource:
    name: str
    source: str
    enabled: bool = True

    @property
    def is_local(self) -> bool:
        return "://" not in self.source or self.source.lower().startswith("file://")


class PackageSourceProvider:
    """Ordered list of package sources; query order is list order."""

    def __init__(self, sources: Optional[Iterable[PackageSource]] = None):
        if sources is None:
            sources = self.from_config(Constants.PACKAGE_SOURCES)
        self._sources: List[PackageSource] = list(sources)

    @staticmethod
    def from_config(entries: Iterable[Dict[str, Any]]) -> List[PackageSource]:
        return [
            PackageSource(str(e.get("name") or e["url"]), str(e["url"]), bool(e.get("enabled", True)))
            for e in entries
            if e.get("url")
        ]

    def get_enabled_sources(self) -> List[PackageSource]:
        return [s for s in self._sources if s.enabled]

    def contains_source(self, source: str) -> bool:
        return any(s.source.lower() == source.lower() for s in self.get_enabled_sources())

    def create_repositories(self) -> List[PackageRepository]:
        """One repository per enabled source: folders become flat local
        repositories, URLs become feed clients."""
        repositories: List[PackageRepository] = []
        for src in self.get_enabled_sources():
            if src.is_local:
                path = src.source[len("file://"):] if src.source.lower().startswith("file://") else src.source
                if not os.path.isdir(path):
                    logger.warning("Package source '%s' does not exist: %s", src.name, path)
                    continue
                repositories.append(LocalPackageRepository(path, flat=True))
            else:
                repositories.append(FeedRepository(src.source, name=src.name))
        return repositories
