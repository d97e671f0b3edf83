"""Concurrent profile inventory and cleanup across many hosts."""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Callable, ContextManager, Iterable, List, Optional, Protocol, Sequence

from .config import DEFAULT_MAX_CONCURRENCY
from .connectivity import Reachability
from .models import (
    ENUMERATE_SUBJECT,
    LOCAL_TARGET,
    ErrorKind,
    ProfileRecord,
    TaskResult,
    normalize_user_name,
)
from .policy import evaluate, normalize_exclusions
from .pool import WorkerPool
from .preconditions import Precondition, check_all
from .registry import DeleteError, EnumerationError
from .report import OutcomeAggregator, Report, no_profiles_result
from .sessions import ManagementSession
from .ssh import SSHError

logger = logging.getLogger("profilesweep.orchestrator")

UNREACHABLE_MESSAGE = "connection failed"
REMOVED_MESSAGE = "profile removed"
LISTED_MESSAGE = "listed"

Probe = Callable[[str], Reachability]
SessionWork = Callable[[ManagementSession], List[TaskResult]]


class SessionOpener(Protocol):
    def open(self, target: str) -> ContextManager[ManagementSession]:
        ...


class ProfileStore(Protocol):
    def list_profiles(self, session: ManagementSession) -> Sequence[ProfileRecord]:
        ...

    def delete_profile(self, session: ManagementSession, record: ProfileRecord) -> object:
        ...


def _unique(names: Iterable[str], key: Callable[[str], str]) -> List[str]:
    seen: set[str] = set()
    unique: List[str] = []
    for name in names:
        cleaned = name.strip()
        if not cleaned or key(cleaned) in seen:
            continue
        seen.add(key(cleaned))
        unique.append(cleaned)
    return unique


def normalize_targets(targets: str | Iterable[str] | None) -> List[str]:
    if targets is None:
        return [LOCAL_TARGET]
    if isinstance(targets, str):
        targets = [targets]
    return _unique(targets, str.lower) or [LOCAL_TARGET]


class Orchestrator:
    """Enumerate and delete user profiles on a set of targets.

    Each target is probed, connected, queried and (for deletion) filtered
    independently in its own worker; the profile deletions of one target run
    in a second, per-target pool. Deletions across all targets of one run
    share a single set of `max_concurrency` slots. Failures are reported as
    results and never stop the other targets.
    """

    def __init__(
        self,
        probe: Probe,
        sessions: SessionOpener,
        registry: ProfileStore,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        preconditions: Sequence[Precondition] = (),
        aggregator: Optional[OutcomeAggregator] = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._probe = probe
        self._sessions = sessions
        self._registry = registry
        self._max_concurrency = max_concurrency
        self._preconditions = tuple(preconditions)
        self._aggregator = aggregator or OutcomeAggregator()

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    def enumerate(
        self,
        targets: str | Iterable[str] | None = None,
        exclude: Iterable[str] = (),
    ) -> Report:
        """List the non-special profiles of every target.

        Profiles whose user name is in ``exclude`` are left out of the listing.
        """
        target_list = normalize_targets(targets)
        check_all(self._preconditions, target_list)
        exclusions = normalize_exclusions(exclude)

        logger.info("Enumerating profiles on %d target(s)", len(target_list))
        work = partial(self._list_in_session, exclusions=exclusions)
        return self._run_targets(target_list, work)

    def delete(
        self,
        targets: str | Iterable[str] | None = None,
        *,
        user_names: Iterable[str] = (),
        delete_all: bool = False,
        exclude: Iterable[str] = (),
    ) -> Report:
        """Delete profiles from every target.

        Either name the users to remove or pass ``delete_all``. ``exclude``
        only protects profiles selected through ``delete_all``; explicitly
        named users are still subject to the existence and loaded checks.
        """
        names = _unique(user_names, normalize_user_name)
        if delete_all == bool(names):
            raise ValueError("Provide either user names to delete or delete_all, but not both")

        target_list = normalize_targets(targets)
        check_all(self._preconditions, target_list)
        exclusions = normalize_exclusions(exclude) if delete_all else frozenset()

        if delete_all:
            logger.info("Deleting all profiles on %d target(s)", len(target_list))
        else:
            logger.info("Deleting %d named profile(s) on %d target(s)", len(names), len(target_list))
        # One set of slots for the whole run, shared by every per-target pool.
        slots = threading.BoundedSemaphore(self._max_concurrency)
        work = partial(
            self._delete_in_session,
            names=tuple(names),
            delete_all=delete_all,
            exclusions=exclusions,
            slots=slots,
        )
        return self._run_targets(target_list, work)

    def _run_targets(self, targets: List[str], work: SessionWork) -> Report:
        pool: WorkerPool[List[TaskResult]] = WorkerPool(self._max_concurrency, name="sweep-targets")

        def on_error(index: int, exc: Exception) -> List[TaskResult]:
            return [TaskResult.failure(targets[index], ENUMERATE_SUBJECT, f"unexpected error: {exc}", ErrorKind.SESSION_FAILED)]

        sections = pool.dispatch([partial(self._run_target, target, work) for target in targets], on_error)
        report = self._aggregator.collect(sections)
        logger.info(
            "Run finished: %d succeeded, %d denied, %d failed",
            len(report.succeeded),
            len(report.denied),
            len(report.failures),
        )
        return report

    def _run_target(self, target: str, work: SessionWork) -> List[TaskResult]:
        if self._probe(target) is not Reachability.REACHABLE:
            logger.warning("Skipping %s: %s", target, UNREACHABLE_MESSAGE)
            return [TaskResult.failure(target, ENUMERATE_SUBJECT, UNREACHABLE_MESSAGE, ErrorKind.UNREACHABLE)]

        try:
            with self._sessions.open(target) as session:
                return work(session)
        except SSHError as exc:
            logger.warning("Session to %s failed: %s", target, exc)
            return [TaskResult.failure(target, ENUMERATE_SUBJECT, f"session failed: {exc}", ErrorKind.SESSION_FAILED)]

    def _fetch_profiles(self, session: ManagementSession) -> List[ProfileRecord]:
        return [record for record in self._registry.list_profiles(session) if not record.special]

    def _list_in_session(self, session: ManagementSession, *, exclusions: frozenset[str]) -> List[TaskResult]:
        target = session.target
        try:
            records = self._fetch_profiles(session)
        except EnumerationError as exc:
            logger.warning("Enumeration on %s failed: %s", target, exc)
            return [TaskResult.failure(target, ENUMERATE_SUBJECT, str(exc), ErrorKind.ENUMERATION_FAILED)]

        visible = [record for record in records if normalize_user_name(record.user_name) not in exclusions]
        if not visible:
            return [no_profiles_result(target, ENUMERATE_SUBJECT)]
        logger.info("Found %d profile(s) on %s", len(visible), target)
        return [TaskResult.success(target, record.user_name, LISTED_MESSAGE, profile=record) for record in visible]

    def _delete_in_session(
        self,
        session: ManagementSession,
        *,
        names: Sequence[str],
        delete_all: bool,
        exclusions: frozenset[str],
        slots: threading.BoundedSemaphore,
    ) -> List[TaskResult]:
        target = session.target
        try:
            records = tuple(self._fetch_profiles(session))
        except EnumerationError as exc:
            logger.warning("Enumeration on %s failed: %s", target, exc)
            return [TaskResult.failure(target, ENUMERATE_SUBJECT, str(exc), ErrorKind.ENUMERATION_FAILED)]

        if not records:
            return [no_profiles_result(target, ENUMERATE_SUBJECT)]

        candidates = _unique((record.user_name for record in records), normalize_user_name) if delete_all else list(names)

        results: List[Optional[TaskResult]] = []
        tasks: List[Callable[[], TaskResult]] = []
        task_positions: List[int] = []
        for name in candidates:
            decision = evaluate(name, records, exclusions)
            if not decision.permitted:
                logger.info("Not deleting %s on %s: %s", name, target, decision.reason)
                results.append(TaskResult.denied(target, name, decision.reason))
                continue
            task_positions.append(len(results))
            tasks.append(partial(self._delete_user, session, name, decision.records, slots))
            results.append(None)

        def on_error(index: int, exc: Exception) -> TaskResult:
            name = candidates[task_positions[index]]
            return TaskResult.failure(target, name, f"unexpected error: {exc}", ErrorKind.DELETE_FAILED)

        pool: WorkerPool[TaskResult] = WorkerPool(self._max_concurrency, name=f"sweep-{target}")
        for position, result in zip(task_positions, pool.dispatch(tasks, on_error)):
            results[position] = result

        return [result for result in results if result is not None]

    def _delete_user(
        self,
        session: ManagementSession,
        name: str,
        records: Sequence[ProfileRecord],
        slots: threading.BoundedSemaphore,
    ) -> TaskResult:
        target = session.target
        with slots:
            for record in records:
                try:
                    self._registry.delete_profile(session, record)
                except DeleteError as exc:
                    logger.warning("Failed to delete %s on %s: %s", name, target, exc)
                    return TaskResult.failure(target, name, str(exc), ErrorKind.DELETE_FAILED)
        logger.info("Deleted profile %s on %s", name, target)
        return TaskResult.success(target, name, REMOVED_MESSAGE)


__all__ = ["Orchestrator", "normalize_targets"]
