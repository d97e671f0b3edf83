"""Domain models shared by the profile inventory and cleanup operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import PureWindowsPath
from typing import Optional, Tuple

LOCAL_TARGET = "local"

_LOCAL_ALIASES = {"local", "localhost", "."}

ENUMERATE_SUBJECT = "enumerate"


def is_local_target(target: str) -> bool:
    return target.strip().lower() in _LOCAL_ALIASES


def normalize_user_name(name: str) -> str:
    return name.strip().casefold()


class Outcome(str, Enum):
    SUCCESS = "success"
    DENIED = "denied"
    FAILURE = "failure"


class ErrorKind(str, Enum):
    """Why a task did not succeed."""

    UNREACHABLE = "unreachable"
    SESSION_FAILED = "session_failed"
    ENUMERATION_FAILED = "enumeration_failed"
    FILTER_DENIED = "filter_denied"
    DELETE_FAILED = "delete_failed"


@dataclass(frozen=True)
class IdleDuration:
    """Time elapsed since a profile was last used, truncated to minutes."""

    days: int
    hours: int
    minutes: int

    @classmethod
    def since(cls, last_use: datetime, now: datetime | None = None) -> "IdleDuration":
        reference = now or datetime.now(timezone.utc)
        if last_use.tzinfo is None:
            last_use = last_use.replace(tzinfo=timezone.utc)
        total_minutes = max(int((reference - last_use).total_seconds() // 60), 0)
        days, remainder = divmod(total_minutes, 24 * 60)
        hours, minutes = divmod(remainder, 60)
        return cls(days=days, hours=hours, minutes=minutes)

    def __str__(self) -> str:
        return f"{self.days}d {self.hours}h {self.minutes}m"


@dataclass(frozen=True)
class ProfileRecord:
    """A user profile as reported by a host's profile store."""

    target: str
    local_path: str
    sid: str = ""
    last_use_time: Optional[datetime] = None
    loaded: bool = False
    special: bool = False

    @property
    def user_name(self) -> str:
        return PureWindowsPath(self.local_path).name

    def idle_duration(self, now: datetime | None = None) -> Optional[IdleDuration]:
        if self.last_use_time is None:
            return None
        return IdleDuration.since(self.last_use_time, now)


@dataclass(frozen=True)
class FilterDecision:
    permitted: bool
    reason: str
    records: Tuple[ProfileRecord, ...] = ()


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one enumerate or delete unit of work against a target."""

    target: str
    subject: str
    outcome: Outcome
    message: str
    error: Optional[ErrorKind] = None
    profile: Optional[ProfileRecord] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @classmethod
    def success(
        cls,
        target: str,
        subject: str,
        message: str,
        *,
        profile: ProfileRecord | None = None,
    ) -> "TaskResult":
        return cls(target=target, subject=subject, outcome=Outcome.SUCCESS, message=message, profile=profile)

    @classmethod
    def denied(cls, target: str, subject: str, reason: str) -> "TaskResult":
        return cls(
            target=target,
            subject=subject,
            outcome=Outcome.DENIED,
            message=reason,
            error=ErrorKind.FILTER_DENIED,
        )

    @classmethod
    def failure(cls, target: str, subject: str, message: str, error: ErrorKind) -> "TaskResult":
        return cls(target=target, subject=subject, outcome=Outcome.FAILURE, message=message, error=error)


__all__ = [
    "ENUMERATE_SUBJECT",
    "LOCAL_TARGET",
    "ErrorKind",
    "FilterDecision",
    "IdleDuration",
    "Outcome",
    "ProfileRecord",
    "TaskResult",
    "is_local_target",
    "normalize_user_name",
]
