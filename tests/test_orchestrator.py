import sys
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from profilesweep.connectivity import Reachability
from profilesweep.models import ErrorKind, Outcome, ProfileRecord
from profilesweep.orchestrator import Orchestrator, normalize_targets
from profilesweep.preconditions import LocalShellAvailable, PreconditionError
from profilesweep.registry import DeleteError, EnumerationError
from profilesweep.sessions import ManagementSession, SessionError

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def _profile(target, name, *, loaded=False, special=False, days_idle=None, sid=None):
    return ProfileRecord(
        target=target,
        local_path=f"C:\\Users\\{name}",
        sid=sid or f"S-1-5-21-42-{abs(hash(name)) % 10000}",
        last_use_time=NOW - timedelta(days=days_idle) if days_idle is not None else None,
        loaded=loaded,
        special=special,
    )


class FakeProbe:
    def __init__(self, down=()):
        self.down = set(down)
        self.calls = []

    def __call__(self, target):
        self.calls.append(target)
        return Reachability.UNREACHABLE if target in self.down else Reachability.REACHABLE


class FakeSessions:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.opened = []
        self.closed = []

    @contextmanager
    def open(self, target):
        self.opened.append(target)
        if target in self.failing:
            raise SessionError("Authentication with the remote host failed")
        try:
            yield ManagementSession(target, runner=None)
        finally:
            self.closed.append(target)


class FakeRegistry:
    def __init__(self, profiles=None, *, failing_list=(), failing_delete=(), delay=0.0):
        self.profiles = profiles or {}
        self.failing_list = set(failing_list)
        self.failing_delete = set(failing_delete)
        self.delay = delay
        self.deleted = []
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def list_profiles(self, session):
        if session.target in self.failing_list:
            raise EnumerationError(f"Failed to list profiles on {session.target}: access denied")
        return list(self.profiles.get(session.target, []))

    def delete_profile(self, session, record):
        assert not record.loaded, "loaded profiles must never reach the registry"
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if record.user_name in self.failing_delete:
                raise DeleteError(f"Failed to remove profile {record.local_path}: The process cannot access the file")
            with self._lock:
                self.deleted.append((session.target, record.user_name))
        finally:
            with self._lock:
                self.active -= 1


def _orchestrator(registry, *, probe=None, sessions=None, **kwargs):
    return Orchestrator(probe or FakeProbe(), sessions or FakeSessions(), registry, **kwargs)


def _by_subject(report):
    return {result.subject: result for result in report.results}


def test_enumerate_without_profiles_reports_informational_row():
    report = _orchestrator(FakeRegistry()).enumerate(["local"])

    assert len(report.results) == 1
    result = report.results[0]
    assert result.outcome is Outcome.SUCCESS
    assert result.message == "no profiles found on local"


def test_delete_all_honours_exclusions_and_loaded_state():
    registry = FakeRegistry(
        {
            "ws01": [
                _profile("ws01", "alice", days_idle=1),
                _profile("ws01", "bob", loaded=True, days_idle=0),
                _profile("ws01", "carol", days_idle=30),
            ]
        }
    )

    report = _orchestrator(registry).delete("ws01", delete_all=True, exclude=["alice"])

    results = _by_subject(report)
    assert results["alice"].outcome is Outcome.DENIED
    assert results["alice"].message == "excluded from deletion"
    assert results["bob"].outcome is Outcome.DENIED
    assert results["bob"].message == "loaded, cannot remove"
    assert results["carol"].outcome is Outcome.SUCCESS
    assert registry.deleted == [("ws01", "carol")]


def test_delete_unknown_user_is_denied():
    registry = FakeRegistry({"ws01": [_profile("ws01", "alice")]})

    report = _orchestrator(registry).delete("ws01", user_names=["dave"])

    assert len(report.results) == 1
    assert report.results[0].subject == "dave"
    assert report.results[0].outcome is Outcome.DENIED
    assert report.results[0].message == "does not exist on the computer"
    assert registry.deleted == []


def test_unreachable_target_does_not_block_reachable_one():
    registry = FakeRegistry({"ws01": [_profile("ws01", name) for name in ("alice", "bob", "carol")]})
    probe = FakeProbe(down={"down-host"})
    sessions = FakeSessions()

    report = _orchestrator(registry, probe=probe, sessions=sessions).enumerate(["down-host", "ws01"])

    assert [result.target for result in report.results] == ["down-host", "ws01", "ws01", "ws01"]
    failure = report.results[0]
    assert failure.outcome is Outcome.FAILURE
    assert failure.message == "connection failed"
    assert failure.error is ErrorKind.UNREACHABLE
    assert "down-host" not in sessions.opened
    assert all(result.outcome is Outcome.SUCCESS for result in report.results[1:])


def test_session_failure_is_isolated_to_its_target():
    registry = FakeRegistry(
        {
            "ws01": [_profile("ws01", "alice")],
            "ws03": [_profile("ws03", "carol")],
        }
    )
    sessions = FakeSessions(failing={"ws02"})

    report = _orchestrator(registry, sessions=sessions).enumerate(["ws01", "ws02", "ws03"])

    assert [result.target for result in report.results] == ["ws01", "ws02", "ws03"]
    failed = report.results[1]
    assert failed.error is ErrorKind.SESSION_FAILED
    assert "Authentication" in failed.message
    assert report.results[0].ok and report.results[2].ok


def test_special_profiles_never_surface():
    registry = FakeRegistry(
        {
            "ws01": [
                _profile("ws01", "systemprofile", special=True),
                _profile("ws01", "alice"),
            ]
        }
    )
    orchestrator = _orchestrator(registry)

    listed = orchestrator.enumerate("ws01")
    deleted = orchestrator.delete("ws01", delete_all=True)
    named = orchestrator.delete("ws01", user_names=["systemprofile"])

    assert [result.subject for result in listed.results] == ["alice"]
    assert [result.subject for result in deleted.results] == ["alice"]
    assert named.results[0].outcome is Outcome.DENIED
    assert ("ws01", "systemprofile") not in registry.deleted


def test_enumerate_applies_exclusions_to_listing():
    registry = FakeRegistry({"ws01": [_profile("ws01", "alice"), _profile("ws01", "bob")]})

    report = _orchestrator(registry).enumerate("ws01", exclude=["ALICE"])

    assert [result.subject for result in report.results] == ["bob"]


def test_explicit_names_ignore_exclusion_list():
    registry = FakeRegistry({"ws01": [_profile("ws01", "alice")]})

    report = _orchestrator(registry).delete("ws01", user_names=["alice"], exclude=["alice"])

    assert report.results[0].outcome is Outcome.SUCCESS
    assert registry.deleted == [("ws01", "alice")]


def test_explicit_names_are_deduplicated():
    registry = FakeRegistry({"ws01": [_profile("ws01", "alice")]})

    report = _orchestrator(registry).delete("ws01", user_names=["alice", "ALICE", " alice "])

    assert len(report.results) == 1
    assert registry.deleted == [("ws01", "alice")]


def test_delete_failure_becomes_failure_row():
    registry = FakeRegistry(
        {"ws01": [_profile("ws01", "alice"), _profile("ws01", "bob")]},
        failing_delete={"alice"},
    )

    report = _orchestrator(registry).delete("ws01", delete_all=True)

    results = _by_subject(report)
    assert results["alice"].outcome is Outcome.FAILURE
    assert results["alice"].error is ErrorKind.DELETE_FAILED
    assert results["bob"].outcome is Outcome.SUCCESS


def test_enumeration_failure_becomes_failure_row():
    registry = FakeRegistry({"ws02": [_profile("ws02", "bob")]}, failing_list={"ws01"})
    sessions = FakeSessions()

    report = _orchestrator(registry, sessions=sessions).delete(["ws01", "ws02"], delete_all=True)

    assert report.results[0].error is ErrorKind.ENUMERATION_FAILED
    assert report.results[1].subject == "bob"
    assert report.results[1].ok
    assert sessions.closed.count("ws01") == 1


def test_unexpected_error_in_target_is_contained():
    class ExplodingRegistry(FakeRegistry):
        def list_profiles(self, session):
            if session.target == "ws01":
                raise KeyError("surprise")
            return super().list_profiles(session)

    registry = ExplodingRegistry({"ws02": [_profile("ws02", "bob")]})
    sessions = FakeSessions()

    report = _orchestrator(registry, sessions=sessions).enumerate(["ws01", "ws02"])

    assert report.results[0].outcome is Outcome.FAILURE
    assert report.results[1].subject == "bob"
    assert "ws01" in sessions.closed


def test_delete_respects_concurrency_bound():
    names = [f"user{index}" for index in range(8)]
    registry = FakeRegistry({"ws01": [_profile("ws01", name) for name in names]}, delay=0.02)

    report = _orchestrator(registry, max_concurrency=2).delete("ws01", delete_all=True)

    assert len(report.succeeded) == 8
    assert registry.peak <= 2


def test_delete_bound_holds_across_targets():
    targets = ["ws01", "ws02", "ws03", "ws04"]
    registry = FakeRegistry(
        {target: [_profile(target, f"user{index}") for index in range(4)] for target in targets},
        delay=0.05,
    )

    report = _orchestrator(registry, max_concurrency=2).delete(targets, delete_all=True)

    assert len(report.succeeded) == 16
    assert registry.peak <= 2


def test_enumerate_is_repeatable():
    registry = FakeRegistry({"ws01": [_profile("ws01", "alice", days_idle=3), _profile("ws01", "bob", loaded=True)]})
    orchestrator = _orchestrator(registry)

    first = orchestrator.enumerate("ws01")
    second = orchestrator.enumerate("ws01")

    def fields(report):
        return [(row.user_name, row.local_path, row.loaded) for row in report.profile_rows(NOW)]

    assert fields(first) == fields(second)


def test_delete_requires_exactly_one_selection():
    orchestrator = _orchestrator(FakeRegistry())

    with pytest.raises(ValueError):
        orchestrator.delete("ws01")
    with pytest.raises(ValueError):
        orchestrator.delete("ws01", user_names=["alice"], delete_all=True)


def test_precondition_failure_aborts_before_any_probe():
    probe = FakeProbe()
    orchestrator = _orchestrator(
        FakeRegistry(),
        probe=probe,
        preconditions=[LocalShellAvailable(locate=lambda: None)],
    )

    with pytest.raises(PreconditionError):
        orchestrator.enumerate(["local"])
    assert probe.calls == []


def test_normalize_targets_defaults_to_local_and_deduplicates():
    assert normalize_targets(None) == ["local"]
    assert normalize_targets([]) == ["local"]
    assert normalize_targets(["WS01", "ws01", " ws02 "]) == ["WS01", "ws02"]
