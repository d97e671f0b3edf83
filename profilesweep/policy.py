"""Deletion policy applied to every candidate profile before removal."""

from __future__ import annotations

from typing import AbstractSet, Iterable, Sequence

from .models import FilterDecision, ProfileRecord, normalize_user_name

REASON_MISSING = "does not exist on the computer"
REASON_EXCLUDED = "excluded from deletion"
REASON_LOADED = "loaded, cannot remove"
REASON_PERMITTED = "permitted"


def normalize_exclusions(names: Iterable[str]) -> frozenset[str]:
    return frozenset(normalize_user_name(name) for name in names if name and name.strip())


def match_profiles(user_name: str, profiles: Sequence[ProfileRecord]) -> tuple[ProfileRecord, ...]:
    """Return the records whose profile folder name equals ``user_name``.

    Matching compares the whole last path segment, ignoring case, so ``an``
    never matches ``C:\\Users\\Ivan``.
    """

    wanted = normalize_user_name(user_name)
    return tuple(record for record in profiles if normalize_user_name(record.user_name) == wanted)


def evaluate(
    user_name: str,
    profiles: Sequence[ProfileRecord],
    exclusions: AbstractSet[str],
) -> FilterDecision:
    """Decide whether ``user_name`` may be deleted from a host.

    ``exclusions`` must already be normalised with :func:`normalize_exclusions`.
    Exclusion is checked before loaded-state, so an excluded user is always
    reported as excluded.
    """

    matched = match_profiles(user_name, profiles)
    if not matched:
        return FilterDecision(permitted=False, reason=REASON_MISSING)
    if normalize_user_name(user_name) in exclusions:
        return FilterDecision(permitted=False, reason=REASON_EXCLUDED, records=matched)
    if any(record.loaded for record in matched):
        return FilterDecision(permitted=False, reason=REASON_LOADED, records=matched)
    return FilterDecision(permitted=True, reason=REASON_PERMITTED, records=matched)


__all__ = [
    "REASON_EXCLUDED",
    "REASON_LOADED",
    "REASON_MISSING",
    "REASON_PERMITTED",
    "evaluate",
    "match_profiles",
    "normalize_exclusions",
]
