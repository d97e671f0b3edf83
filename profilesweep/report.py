"""Aggregation and rendering of per-target task results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import Outcome, TaskResult

NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class ProfileRow:
    """Display form of an enumerated profile."""

    target: str
    user_name: str
    local_path: str
    last_used: Optional[str]
    loaded: bool
    idle: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "target": self.target,
            "user_name": self.user_name,
            "local_path": self.local_path,
            "last_used": self.last_used,
            "loaded": self.loaded,
            "idle": self.idle,
        }


@dataclass(frozen=True)
class Report:
    """Ordered results of one orchestration run."""

    results: Tuple[TaskResult, ...] = ()

    def __iter__(self):
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> Tuple[TaskResult, ...]:
        return tuple(result for result in self.results if result.outcome is Outcome.SUCCESS)

    @property
    def denied(self) -> Tuple[TaskResult, ...]:
        return tuple(result for result in self.results if result.outcome is Outcome.DENIED)

    @property
    def failures(self) -> Tuple[TaskResult, ...]:
        return tuple(result for result in self.results if result.outcome is Outcome.FAILURE)

    @property
    def has_failures(self) -> bool:
        return any(result.outcome is Outcome.FAILURE for result in self.results)

    def targets(self) -> List[str]:
        seen: List[str] = []
        for result in self.results:
            if result.target not in seen:
                seen.append(result.target)
        return seen

    def for_target(self, target: str) -> Tuple[TaskResult, ...]:
        return tuple(result for result in self.results if result.target == target)

    def profile_rows(self, now: datetime | None = None) -> List[ProfileRow]:
        reference = now or datetime.now(timezone.utc)
        rows: List[ProfileRow] = []
        for result in self.results:
            record = result.profile
            if record is None:
                continue
            idle = record.idle_duration(reference)
            rows.append(
                ProfileRow(
                    target=result.target,
                    user_name=record.user_name,
                    local_path=record.local_path,
                    last_used=record.last_use_time.strftime("%Y-%m-%d %H:%M:%S %Z") if record.last_use_time else None,
                    loaded=record.loaded,
                    idle=str(idle) if idle is not None else NOT_AVAILABLE,
                )
            )
        return rows


class OutcomeAggregator:
    """Merge per-target result sections into one :class:`Report`.

    Sections are kept in target submission order and nothing is dropped.
    """

    def collect(self, sections: Iterable[Sequence[TaskResult]]) -> Report:
        merged: List[TaskResult] = []
        for section in sections:
            merged.extend(section)
        return Report(results=tuple(merged))


def no_profiles_result(target: str, subject: str) -> TaskResult:
    return TaskResult.success(target, subject, f"no profiles found on {target}")


def render_profiles(report: Report, now: datetime | None = None) -> List[str]:
    """Render enumerate output: profile rows, then any non-profile messages."""

    lines: List[str] = []
    rows = report.profile_rows(now)
    if rows:
        lines.append(f"{'Computer':<16}  {'User':<20}  {'Last used':<24}  {'Loaded':<6}  {'Idle':<12}  Path")
        lines.append("-" * 110)
        for row in rows:
            last_used = row.last_used or NOT_AVAILABLE
            loaded = "yes" if row.loaded else "no"
            lines.append(
                f"{row.target:<16}  {row.user_name:<20}  {last_used:<24}  {loaded:<6}  {row.idle:<12}  {row.local_path}"
            )

    messages = [result for result in report.results if result.profile is None]
    if messages:
        if lines:
            lines.append("")
        lines.extend(render_results(Report(results=tuple(messages))))
    return lines


def render_results(report: Report) -> List[str]:
    lines = [f"{'Computer':<16}  {'Subject':<20}  {'Outcome':<8}  Message", "-" * 80]
    for result in report.results:
        lines.append(f"{result.target:<16}  {result.subject:<20}  {result.outcome.value:<8}  {result.message}")
    return lines


__all__ = [
    "NOT_AVAILABLE",
    "OutcomeAggregator",
    "ProfileRow",
    "Report",
    "no_profiles_result",
    "render_profiles",
    "render_results",
]
