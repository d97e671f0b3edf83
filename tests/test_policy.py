import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from profilesweep.models import ProfileRecord
from profilesweep.policy import (
    REASON_EXCLUDED,
    REASON_LOADED,
    REASON_MISSING,
    evaluate,
    match_profiles,
    normalize_exclusions,
)


def _profile(name: str, *, loaded: bool = False) -> ProfileRecord:
    return ProfileRecord(target="ws01", local_path=f"C:\\Users\\{name}", sid=f"S-1-5-21-100-{len(name)}", loaded=loaded)


PROFILES = (
    _profile("alice"),
    _profile("bob", loaded=True),
    _profile("Ivan"),
)


def test_missing_user_is_denied():
    decision = evaluate("dave", PROFILES, frozenset())
    assert decision.permitted is False
    assert decision.reason == REASON_MISSING
    assert decision.records == ()


@pytest.mark.parametrize("loaded", [False, True])
def test_exclusion_dominates_loaded_state(loaded):
    profiles = (_profile("carol", loaded=loaded),)
    decision = evaluate("carol", profiles, normalize_exclusions(["Carol"]))
    assert decision.permitted is False
    assert decision.reason == REASON_EXCLUDED


def test_loaded_profile_is_denied_when_not_excluded():
    decision = evaluate("bob", PROFILES, normalize_exclusions(["alice"]))
    assert decision.permitted is False
    assert decision.reason == REASON_LOADED


def test_unloaded_profile_is_permitted_with_matched_records():
    decision = evaluate("ALICE", PROFILES, frozenset())
    assert decision.permitted is True
    assert decision.records == (PROFILES[0],)


def test_match_uses_whole_folder_name():
    assert match_profiles("an", PROFILES) == ()
    assert match_profiles("ivan", PROFILES) == (PROFILES[2],)


def test_any_loaded_match_blocks_deletion():
    profiles = (
        ProfileRecord(target="ws01", local_path="C:\\Users\\erin", sid="S-1-5-21-1-1"),
        ProfileRecord(target="ws01", local_path="D:\\Profiles\\erin", sid="S-1-5-21-1-2", loaded=True),
    )
    decision = evaluate("erin", profiles, frozenset())
    assert decision.permitted is False
    assert decision.reason == REASON_LOADED


def test_normalize_exclusions_ignores_blank_names():
    assert normalize_exclusions(["  Alice ", "", "   ", "BOB"]) == frozenset({"alice", "bob"})
