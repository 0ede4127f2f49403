"""Dependency resolution.

The resolver walks the dependency graph breadth-first from the requested
top-level dependencies. The first version chosen for an id is kept for the
rest of the walk; there is no backtracking. A diamond such as
``A -> C [1.0,2.0)`` and ``B -> C [2.0,3.0)`` therefore keeps whichever C was
reached first and reports the other constraint as a warning, even when a
different choice for A or B could satisfy both. This is a known limitation,
not full graph satisfiability.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from common.logging_utils import extra_context, is_debug_enabled
from constants import Constants
from errors import DependencyConflictError, DependencyResolutionError, FeedError
from packages.dependency import PackageDependency
from packages.descriptor import PackageDescriptor
from registry.base import PackageRepository
from versioning.models import Version

logger = logging.getLogger(__name__)


class ResolutionAction(Enum):
    SATISFIED = "satisfied"
    INSTALL = "install"
    UPDATE = "update"
    UNRESOLVABLE = "unresolvable"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class DependencyRequest:
    """A dependency requested by a project (or by another package)."""

    requester: str
    dependency: PackageDependency

    @property
    def id(self) -> str:
        return self.dependency.id


@dataclass
class ResolutionEntry:
    request: DependencyRequest
    action: ResolutionAction
    package: Optional[PackageDescriptor] = None
    replaces: Optional[Version] = None
    error: Optional[Exception] = None
    depth: int = 0

    @property
    def package_id(self) -> str:
        return self.package.id if self.package is not None else self.request.id


@dataclass
class ResolutionPlan:
    entries: List[ResolutionEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def _with(self, *actions: ResolutionAction) -> List[ResolutionEntry]:
        return [e for e in self.entries if e.action in actions]

    @property
    def to_install(self) -> List[ResolutionEntry]:
        """INSTALL and UPDATE entries, in resolution order."""
        return self._with(ResolutionAction.INSTALL, ResolutionAction.UPDATE)

    @property
    def satisfied(self) -> List[ResolutionEntry]:
        return self._with(ResolutionAction.SATISFIED)

    @property
    def conflicts(self) -> List[DependencyConflictError]:
        seen, result = set(), []
        for e in self._with(ResolutionAction.CONFLICT):
            if id(e.error) not in seen:
                seen.add(id(e.error))
                result.append(e.error)
        return result

    @property
    def errors(self) -> List[Exception]:
        return self.conflicts + [e.error for e in self._with(ResolutionAction.UNRESOLVABLE)]

    @property
    def has_errors(self) -> bool:
        return any(e.action in (ResolutionAction.UNRESOLVABLE, ResolutionAction.CONFLICT)
                   for e in self.entries)

    def entry_for(self, package_id: str) -> Optional[ResolutionEntry]:
        for e in self.entries:
            if e.request.id.lower() == package_id.lower():
                return e
        return None

    def raise_for_errors(self) -> None:
        """Raise the first conflict, else the first resolution error."""
        errors = self.errors
        if errors:
            raise errors[0]


class Resolver:
    """Computes which packages to install for a set of requested dependencies.

    Args:
        local: Already installed packages.
        remotes: Remote repositories, queried in order; the first one offering
            a satisfying version wins.
        allow_prerelease: Consider pre-release versions for ranges; defaults to
            the configured ``ALLOW_PRERELEASE``.
        allow_unlisted: Consider unlisted versions for ranges (exact pins
            always can resolve to unlisted versions).
        target_framework: Framework used to select dependency sets.
    """

    def __init__(
        self,
        local: PackageRepository,
        remotes: Sequence[PackageRepository],
        allow_prerelease: Optional[bool] = None,
        allow_unlisted: bool = False,
        target_framework: Optional[str] = None,
    ):
        self.local = local
        self.remotes = list(remotes)
        self.allow_prerelease = Constants.ALLOW_PRERELEASE if allow_prerelease is None else allow_prerelease
        self.allow_unlisted = allow_unlisted
        self.target_framework = target_framework

    # -- candidate selection ----------------------------------------------

    def _select_local(self, dependency: PackageDependency) -> Optional[PackageDescriptor]:
        spec = dependency.version_spec
        if spec is not None and spec.is_exact:
            return self.local.find_package(dependency.id, spec.min_version)
        candidates = self.local.find_packages(
            dependency.id, spec, allow_prerelease=True, allow_unlisted=True
        )
        return candidates[0] if candidates else None

    def _select_remote(self, dependency: PackageDependency) -> Optional[PackageDescriptor]:
        last_error: Optional[Exception] = None
        for repo in self.remotes:
            try:
                candidates = repo.find_packages(
                    dependency.id,
                    dependency.version_spec,
                    allow_prerelease=self.allow_prerelease,
                    allow_unlisted=self.allow_unlisted,
                )
            except FeedError as exc:
                logger.warning("Source %s unavailable while resolving %s: %s", repo.source, dependency.id, exc)
                last_error = exc
                continue
            if candidates:
                return candidates[0]
        if last_error is not None:
            raise DependencyResolutionError(
                dependency.id, dependency.version_spec,
                f"Unable to resolve dependency '{dependency}': {last_error}",
            ) from last_error
        return None

    def _resolve_one(self, request: DependencyRequest, depth: int) -> ResolutionEntry:
        dependency = request.dependency
        local = self._select_local(dependency)
        if local is not None:
            return ResolutionEntry(request, ResolutionAction.SATISFIED, local, depth=depth)
        try:
            candidate = self._select_remote(dependency)
        except DependencyResolutionError as exc:
            return ResolutionEntry(request, ResolutionAction.UNRESOLVABLE, error=exc, depth=depth)
        if candidate is None:
            error = DependencyResolutionError(dependency.id, dependency.version_spec)
            return ResolutionEntry(request, ResolutionAction.UNRESOLVABLE, error=error, depth=depth)
        installed = self.local.find_package(dependency.id)
        if installed is not None and installed.version != candidate.version:
            return ResolutionEntry(request, ResolutionAction.UPDATE, candidate,
                                   replaces=installed.version, depth=depth)
        return ResolutionEntry(request, ResolutionAction.INSTALL, candidate, depth=depth)

    # -- graph walk -------------------------------------------------------

    def resolve(
        self,
        requests: Iterable[DependencyRequest],
        ignore_dependencies: bool = False,
    ) -> ResolutionPlan:
        """Build a plan for ``requests``.

        Top-level requests for the same id that land on different versions
        produce a :class:`DependencyConflictError` entry for each of them and
        no install for that id.
        """
        requests = list(requests)
        plan = ResolutionPlan()

        # Top level: every request is resolved on its own so disagreements surface.
        top: Dict[str, List[ResolutionEntry]] = {}
        for request in requests:
            entry = self._resolve_one(request, 0)
            top.setdefault(request.id.lower(), []).append(entry)

        chosen: Dict[str, ResolutionEntry] = {}
        queue = deque()
        for key, entries in top.items():
            resolved = [e for e in entries if e.package is not None]
            versions = []
            for e in resolved:
                if e.package.version not in versions:
                    versions.append(e.package.version)
            conflict = None
            if len(versions) > 1:
                conflict = DependencyConflictError(
                    entries[0].request.id,
                    [(e.request.requester, e.package.version) for e in resolved],
                )
                logger.error("%s", conflict)

            # Unresolvable requests keep their own outcome next to the resolved ones.
            for e in entries:
                if e.package is None:
                    plan.entries.append(e)
                    chosen.setdefault(key, e)
                elif conflict is not None:
                    marked = ResolutionEntry(e.request, ResolutionAction.CONFLICT, package=e.package, error=conflict)
                    plan.entries.append(marked)
                    chosen[key] = marked
                elif e is resolved[0]:
                    plan.entries.append(e)
                    chosen[key] = e
                    if not ignore_dependencies:
                        queue.append(e)

        while queue:
            parent = queue.popleft()
            for dependency in parent.package.dependencies_for(self.target_framework):
                key = dependency.id.lower()
                existing = chosen.get(key)
                if existing is not None:
                    if existing.package is not None and not dependency.satisfies(existing.package.version):
                        message = (
                            f"{parent.package} requires {dependency} but "
                            f"{existing.package} was already selected"
                        )
                        logger.warning("%s", message)
                        plan.warnings.append(message)
                    continue
                request = DependencyRequest(str(parent.package), dependency)
                entry = self._resolve_one(request, parent.depth + 1)
                plan.entries.append(entry)
                chosen[key] = entry
                if entry.package is not None:
                    queue.append(entry)

        if is_debug_enabled(logger):
            logger.debug(
                "Resolution finished",
                extra=extra_context(
                    event="resolution",
                    component="resolver",
                    requested=len(requests),
                    entries=len(plan.entries),
                    install=len(plan.to_install),
                    errors=len(plan.errors),
                ),
            )
        return plan

    def find_orphans(self, referenced: Iterable[Tuple[str, Version]]) -> List[PackageDescriptor]:
        """Installed packages that none of ``referenced`` (id, version) pairs point to."""
        wanted = {(pid.lower(), ver) for pid, ver in referenced}
        repo_packages = getattr(self.local, "get_packages", None)
        if repo_packages is None:
            return []
        return [p for p in repo_packages() if p.key not in wanted]
