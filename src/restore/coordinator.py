"""Restore of missing packages for an open solution.

A run moves through ``SCANNING -> RESOLVING -> FETCHING -> RECONCILING`` and
ends in ``DONE`` (possibly with per-package errors in the report) or
``FAILED`` when the run could not continue at all.

Failures are per package: one package that cannot be fetched is recorded in
the report and the rest of the run proceeds. Packages installed before a
failure stay installed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from common.logging_utils import Timer, extra_context, is_debug_enabled
from constants import Constants
from errors import (
    CacheIntegrityError,
    DependencyConflictError,
    DependencyResolutionError,
    NuPackError,
    SolutionNotAvailableError,
)
from packages.dependency import PackageDependency
from packages.descriptor import PackageDescriptor
from references.store import PackageReference, PackageReferenceFile
from registry.base import PackageRepository
from registry.cache import HashProvider, MachineCache
from registry.local import LocalPackageRepository
from registry.sources import PackageSourceProvider
from resolution.resolver import DependencyRequest, ResolutionEntry, Resolver
from versioning.models import Version, VersionSpec
from .solution import Solution

logger = logging.getLogger(__name__)

# fn(callback, *args): delivers a notification on the caller's context
Dispatcher = Callable[..., Any]

_in_flight: Dict[str, Future] = {}
_in_flight_lock = threading.Lock()


class RestoreState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RestoreFailure:
    package_id: Optional[str]
    version: Optional[Version]
    reason: str
    error: Optional[BaseException] = field(default=None, compare=False)


@dataclass
class RestoreReport:
    """Outcome of one restore run."""

    state: RestoreState = RestoreState.IDLE
    installed: List[Tuple[str, Version]] = field(default_factory=list)
    failures: List[RestoreFailure] = field(default_factory=list)
    conflicts: List[DependencyConflictError] = field(default_factory=list)
    orphans: List[PackageDescriptor] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: int = 0

    @property
    def has_errors(self) -> bool:
        return bool(self.failures) or bool(self.conflicts) or self.state == RestoreState.FAILED

    def as_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "has_errors": self.has_errors,
            "cancelled": self.cancelled,
            "duration_ms": self.duration_ms,
            "installed": [{"id": pid, "version": str(ver)} for pid, ver in self.installed],
            "failures": [
                {
                    "id": f.package_id,
                    "version": str(f.version) if f.version is not None else None,
                    "reason": f.reason,
                }
                for f in self.failures
            ],
            "conflicts": [
                {
                    "id": c.package_id,
                    "requests": [{"requester": who, "version": str(ver)} for who, ver in c.requests],
                }
                for c in self.conflicts
            ],
            "orphans": [{"id": p.id, "version": str(p.version)} for p in self.orphans],
        }


class CancellationToken:
    """Cooperative cancellation, checked before each package fetch starts."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class _FetchOutcome:
    reference: PackageReference
    descriptor: Optional[PackageDescriptor] = None
    payload: Optional[bytes] = None
    error: Optional[BaseException] = None
    cancelled: bool = False


class RestoreCoordinator:
    """Makes sure every package referenced by a solution is installed.

    Args:
        solution: The open solution to restore.
        local: Repository packages are installed into; defaults to the
            solution ``packages`` folder.
        remotes: Remote repositories in query order; defaults to the
            configured package sources.
        machine_cache: Machine-wide cache consulted before the remotes;
            ``None`` disables caching.
        hash_provider: Hashes payloads for cache verification.
        max_workers: Parallel package fetches.
        on_state_changed: ``callback(RestoreState)``.
        on_missing_status_changed: ``callback(bool)``, True when packages
            are missing.
        on_completed: ``callback(RestoreReport)`` after a background run.
        dispatcher: ``dispatcher(callback, *args)`` delivering notifications
            on the caller's context. When omitted, a running asyncio loop is
            used if there is one, otherwise callbacks run on the worker.
    """

    def __init__(
        self,
        solution: Solution,
        local: Optional[PackageRepository] = None,
        remotes: Optional[Sequence[PackageRepository]] = None,
        machine_cache: Optional[MachineCache] = None,
        hash_provider: Optional[HashProvider] = None,
        max_workers: Optional[int] = None,
        on_state_changed: Optional[Callable[[RestoreState], Any]] = None,
        on_missing_status_changed: Optional[Callable[[bool], Any]] = None,
        on_completed: Optional[Callable[[RestoreReport], Any]] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self.solution = solution
        self.local = local if local is not None else LocalPackageRepository(solution.local_repository_path)
        self.remotes = list(remotes) if remotes is not None else PackageSourceProvider().create_repositories()
        self.machine_cache = machine_cache
        if hash_provider is None:
            hash_provider = machine_cache.hash_provider if machine_cache is not None else HashProvider()
        self.hash_provider = hash_provider
        self.max_workers = max(1, max_workers or Constants.MAX_FETCH_WORKERS)
        self.on_state_changed = on_state_changed
        self.on_missing_status_changed = on_missing_status_changed
        self.on_completed = on_completed
        self.dispatcher = dispatcher
        self._state = RestoreState.IDLE

    @property
    def state(self) -> RestoreState:
        return self._state

    # -- notifications ----------------------------------------------------

    def _capture_dispatcher(self) -> Optional[Dispatcher]:
        if self.dispatcher is not None:
            return self.dispatcher
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        return loop.call_soon_threadsafe

    @staticmethod
    def _notify(dispatch: Optional[Dispatcher], callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        if dispatch is not None:
            dispatch(callback, *args)
            return
        try:
            callback(*args)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Restore callback %r failed", callback)

    def _set_state(self, state: RestoreState, dispatch: Optional[Dispatcher]) -> None:
        self._state = state
        logger.debug("Restore state: %s", state.value)
        self._notify(dispatch, self.on_state_changed, state)

    # -- public operations ------------------------------------------------

    def check_for_missing_packages(self) -> bool:
        """Return True when any referenced package is absent from the local repository.

        Read-only: nothing is resolved remotely or downloaded.
        """
        return self._check_for_missing_packages(self.dispatcher)

    def _check_for_missing_packages(self, dispatch: Optional[Dispatcher]) -> bool:
        if not self.solution.is_open:
            missing = False
        else:
            missing = any(
                not self.local.exists(ref.id, ref.version)
                for ref in self.solution.get_all_references()
            )
        self._notify(dispatch, self.on_missing_status_changed, missing)
        return missing

    def restore_missing_packages(self, token: Optional[CancellationToken] = None) -> Future:
        """Start a restore on a background thread.

        Only one run per solution is active at a time; a call made while a run
        is in flight returns that run's future.

        Raises:
            SolutionNotAvailableError: No solution is open.
        """
        if not self.solution.is_open:
            raise SolutionNotAvailableError("No solution is open; nothing to restore")

        future, started = self._claim()
        if not started:
            return future

        dispatch = self._capture_dispatcher()
        worker = threading.Thread(
            target=self._background_run,
            args=(future, token, dispatch),
            name=f"nupack-restore-{self.solution.directory}",
            daemon=True,
        )
        worker.start()
        return future

    def _claim(self) -> Tuple[Future, bool]:
        """Register a new run for this solution, or return the one in flight.

        Returns:
            (future, True) for a newly registered run, (in-flight future, False)
            when another run for the same solution has not finished.
        """
        with _in_flight_lock:
            existing = _in_flight.get(self.solution.identity)
            if existing is not None and not existing.done():
                logger.info("Restore already running for %s", self.solution.directory)
                return existing, False
            future: Future = Future()
            _in_flight[self.solution.identity] = future
            return future, True

    def _release(self, future: Future) -> None:
        with _in_flight_lock:
            if _in_flight.get(self.solution.identity) is future:
                del _in_flight[self.solution.identity]

    def _background_run(self, future: Future, token: Optional[CancellationToken],
                        dispatch: Optional[Dispatcher]) -> None:
        if not future.set_running_or_notify_cancel():
            self._release(future)
            return
        try:
            report = self._run(token, dispatch)
            self._check_for_missing_packages(dispatch)
            self._notify(dispatch, self.on_completed, report)
        except BaseException as exc:  # pylint: disable=broad-exception-caught
            logger.error("Restore of %s failed: %s", self.solution.directory, exc)
            self._release(future)
            future.set_exception(exc)
            return
        self._release(future)
        future.set_result(report)

    def run(self, token: Optional[CancellationToken] = None) -> RestoreReport:
        """Restore synchronously on the calling thread.

        Shares the single-flight guard with :meth:`restore_missing_packages`:
        while another run for the same solution is in flight, this waits for
        it and returns its report.

        Raises:
            SolutionNotAvailableError: No solution is open.
        """
        if not self.solution.is_open:
            raise SolutionNotAvailableError("No solution is open; nothing to restore")

        future, started = self._claim()
        if not started:
            return future.result()
        future.set_running_or_notify_cancel()
        try:
            report = self._run(token, self.dispatcher)
        except BaseException as exc:
            self._release(future)
            future.set_exception(exc)
            raise
        self._release(future)
        future.set_result(report)
        return report

    # -- phases -----------------------------------------------------------

    def _run(self, token: Optional[CancellationToken], dispatch: Optional[Dispatcher]) -> RestoreReport:
        if not self.solution.is_open:
            raise SolutionNotAvailableError("No solution is open; nothing to restore")

        report = RestoreReport()
        with Timer() as timer:
            try:
                self._set_state(RestoreState.SCANNING, dispatch)
                stores = self.solution.reference_files()
                references = self._scan(stores)

                self._set_state(RestoreState.RESOLVING, dispatch)
                missing, candidates = self._resolve(stores, references, report)

                outcomes: List[_FetchOutcome] = []
                if missing:
                    self._set_state(RestoreState.FETCHING, dispatch)
                    outcomes = self._fetch_all(missing, candidates, token)

                self._set_state(RestoreState.RECONCILING, dispatch)
                self._reconcile(stores, references, outcomes, report)
                report.state = RestoreState.DONE
            except (NuPackError, OSError) as exc:
                logger.error("Restore aborted: %s", exc)
                report.failures.append(RestoreFailure(None, None, str(exc), exc))
                report.state = RestoreState.FAILED
        report.duration_ms = timer.duration_ms()
        self._set_state(report.state, dispatch)

        logger.info(
            "Restore finished: %d installed, %d failed",
            len(report.installed),
            len(report.failures),
            extra=extra_context(
                event="restore_complete",
                component="restore",
                outcome="error" if report.has_errors else "success",
                duration_ms=report.duration_ms,
                cancelled=report.cancelled or None,
            ),
        )
        return report

    @staticmethod
    def _scan(stores: Sequence[PackageReferenceFile]) -> List[Tuple[str, PackageReference]]:
        """(store name, reference) pairs, deduplicated by (id, version), first seen kept."""
        seen = set()
        references = []
        for store in stores:
            for reference in store.get_package_references():
                if reference.key in seen:
                    continue
                seen.add(reference.key)
                references.append((store.name, reference))
        return references

    def _resolve(
        self,
        stores: Sequence[PackageReferenceFile],
        references: Sequence[Tuple[str, PackageReference]],
        report: RestoreReport,
    ) -> Tuple[List[PackageReference], Dict[tuple, ResolutionEntry]]:
        """Split references into missing ones and look up their remote candidates."""
        requests = [
            DependencyRequest(owner, PackageDependency(ref.id, VersionSpec.exact(ref.version)))
            for owner, ref in references
        ]
        resolver = Resolver(
            self.local,
            self.remotes,
            allow_unlisted=True,
        )
        plan = resolver.resolve(requests, ignore_dependencies=True)

        # Conflicting ids are left for the user to settle; nothing is installed for them.
        for conflict in plan.conflicts:
            report.conflicts.append(conflict)
        conflicted = {c.package_id.lower() for c in report.conflicts}

        by_key: Dict[tuple, ResolutionEntry] = {}
        for entry in plan.entries:
            spec = entry.request.dependency.version_spec
            by_key[(entry.request.id.lower(), spec.min_version)] = entry

        missing = [
            ref for _, ref in references
            if ref.id.lower() not in conflicted and not self.local.exists(ref.id, ref.version)
        ]
        if is_debug_enabled(logger):
            logger.debug(
                "Scanned references",
                extra=extra_context(
                    event="restore_scan",
                    component="restore",
                    stores=len(stores),
                    references=len(references),
                    missing=len(missing),
                ),
            )
        return missing, by_key

    def _fetch_all(
        self,
        missing: Sequence[PackageReference],
        candidates: Dict[tuple, ResolutionEntry],
        token: Optional[CancellationToken],
    ) -> List[_FetchOutcome]:
        """Fetch missing packages; outcomes keep the order of ``missing``."""

        def task(reference: PackageReference) -> _FetchOutcome:
            if token is not None and token.is_cancelled:
                return _FetchOutcome(reference, cancelled=True)
            try:
                descriptor, payload = self._fetch_one(reference, candidates.get(reference.key))
            except (NuPackError, OSError) as exc:
                logger.error("Unable to restore %s: %s", reference, exc)
                return _FetchOutcome(reference, error=exc)
            return _FetchOutcome(reference, descriptor, payload)

        if self.max_workers == 1 or len(missing) == 1:
            return [task(ref) for ref in missing]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(task, ref) for ref in missing]
            return [f.result() for f in futures]

    def _fetch_one(
        self, reference: PackageReference, entry: Optional[ResolutionEntry]
    ) -> Tuple[PackageDescriptor, bytes]:
        """Machine cache first, verified against the remote hash; otherwise download."""
        remote = entry.package if entry is not None else None

        cache = self.machine_cache
        guard = cache.locked(reference.id, reference.version) if cache is not None else nullcontext()
        with guard:
            if cache is not None:
                cached = cache.find_package(reference.id, reference.version)
                if cached is not None:
                    payload = cache.read_payload(cached)
                    if payload is not None:
                        try:
                            self._verify(cached, payload, remote)
                            logger.info("Using %s from the machine cache", cached)
                            return cached, payload
                        except CacheIntegrityError as exc:
                            logger.warning("Evicting stale cache entry: %s", exc)
                            cache.remove_package(cached)

            if remote is None:
                if entry is not None and entry.error is not None:
                    raise entry.error
                raise DependencyResolutionError(reference.id, VersionSpec.exact(reference.version))

            payload = self._download(remote)
            if cache is not None:
                remote = cache.add_package(remote, payload)
            return remote, payload

    def _verify(self, cached: PackageDescriptor, payload: bytes, remote: Optional[PackageDescriptor]) -> None:
        """Raise CacheIntegrityError when ``payload`` differs from the remote's advertised hash."""
        if remote is None or not remote.package_hash or not Constants.VERIFY_CACHE_HASHES:
            return
        if not self.hash_provider.matches(payload, remote.package_hash, remote.package_hash_algorithm):
            raise CacheIntegrityError(
                cached.id,
                cached.version,
                remote.package_hash,
                self.hash_provider.compute(payload, remote.package_hash_algorithm),
            )

    def _download(self, remote: PackageDescriptor) -> bytes:
        """Download ``remote``; a payload failing hash verification is retried once."""
        error: Optional[BaseException] = None
        for attempt in (1, 2):
            result = remote.materialize()
            if not result.ok:
                raise result.error
            payload = result.content.payload
            try:
                self._verify(remote, payload, remote)
                return payload
            except CacheIntegrityError as exc:
                logger.warning("Download %d of %s failed verification: %s", attempt, remote, exc)
                error = exc
        raise error

    def _reconcile(
        self,
        stores: Sequence[PackageReferenceFile],
        references: Sequence[Tuple[str, PackageReference]],
        outcomes: Sequence[_FetchOutcome],
        report: RestoreReport,
    ) -> None:
        for outcome in outcomes:
            ref = outcome.reference
            if outcome.cancelled:
                report.cancelled = True
                report.failures.append(RestoreFailure(ref.id, ref.version, "cancelled"))
                continue
            if outcome.error is not None:
                report.failures.append(RestoreFailure(ref.id, ref.version, str(outcome.error), outcome.error))
                continue
            try:
                self.local.add_package(outcome.descriptor, outcome.payload)
            except (NuPackError, OSError) as exc:
                logger.error("Unable to install %s: %s", ref, exc)
                report.failures.append(RestoreFailure(ref.id, ref.version, str(exc), exc))
                continue
            logger.info("Restored %s", ref)
            report.installed.append((ref.id, ref.version))

        conflicted = {c.package_id.lower() for c in report.conflicts}
        for store in stores:
            for ref in store.get_package_references():
                if ref.id.lower() in conflicted:
                    continue
                if ref.require_reinstallation and self.local.exists(ref.id, ref.version):
                    store.mark_for_reinstallation(ref.id, required=False)

        resolver = Resolver(self.local, [])
        report.orphans = resolver.find_orphans((ref.id, ref.version) for _, ref in references)
        for orphan in report.orphans:
            logger.info("Installed package %s is not referenced by any project", orphan)
