"""Query and remove Windows user profiles through a management session."""
from __future__ import annotations

import json
import re
import textwrap
from datetime import datetime, timezone
from typing import List, Optional

from .models import ProfileRecord
from .sessions import ManagementSession
from .ssh import CommandResult, SSHError

_SID_PATTERN = re.compile(r"^S-1-\d+(-\d+)+$")
_MS_DATE_PATTERN = re.compile(r"^/Date\((-?\d+)\)/$")

LIST_PROFILES_SCRIPT = textwrap.dedent(
    """
    $ErrorActionPreference = 'Stop'
    $profiles = @(Get-CimInstance -ClassName Win32_UserProfile |
        Where-Object { -not $_.Special } |
        ForEach-Object {
            [pscustomobject]@{
                SID = $_.SID
                LocalPath = $_.LocalPath
                LastUseTime = if ($_.LastUseTime) { $_.LastUseTime.ToUniversalTime().ToString('o') } else { $null }
                Loaded = [bool]$_.Loaded
                Special = [bool]$_.Special
            }
        })
    ConvertTo-Json -InputObject $profiles -Depth 2 -Compress
    """
).strip()

_DELETE_PROFILE_TEMPLATE = textwrap.dedent(
    """
    $ErrorActionPreference = 'Stop'
    $entry = Get-CimInstance -ClassName Win32_UserProfile -Filter "SID = '{sid}'"
    if (-not $entry) {{ [Console]::Error.WriteLine('Profile not found'); exit 3 }}
    if ($entry.Loaded) {{ [Console]::Error.WriteLine('Profile is loaded'); exit 4 }}
    Remove-CimInstance -InputObject $entry
    """
).strip()


class ProfileRegistryError(RuntimeError):
    """Raised when the remote profile store rejects an operation."""

    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class EnumerationError(ProfileRegistryError):
    """Raised when profiles cannot be listed."""


class DeleteError(ProfileRegistryError):
    """Raised when a profile cannot be removed."""


def _describe(message: str, result: CommandResult) -> str:
    detail = result.stderr.strip().splitlines()
    if detail:
        return f"{message}: {detail[-1].strip()}"
    return f"{message} (exit status {result.exit_status})"


def _parse_timestamp(value: object) -> Optional[datetime]:
    if value in (None, ""):
        return None
    text = str(value).strip()
    match = _MS_DATE_PATTERN.match(text.replace("\\", ""))
    if match:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # .NET round-trip timestamps carry seven fractional digits.
    text = re.sub(r"(\.\d{6})\d+", r"\1", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _sort_key(record: ProfileRecord) -> tuple[int, float]:
    if record.last_use_time is None:
        return (1, 0.0)
    return (0, -record.last_use_time.timestamp())


def parse_profiles(target: str, payload: str) -> List[ProfileRecord]:
    """Turn the JSON emitted by :data:`LIST_PROFILES_SCRIPT` into records.

    Special profiles are dropped and the rest ordered most recently used
    first, with profiles lacking a timestamp last.
    """
    text = payload.strip()
    if not text:
        return []
    data = json.loads(text)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError("Profile listing must be a JSON array")

    records: List[ProfileRecord] = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("LocalPath"):
            continue
        record = ProfileRecord(
            target=target,
            local_path=str(entry["LocalPath"]),
            sid=str(entry.get("SID") or ""),
            last_use_time=_parse_timestamp(entry.get("LastUseTime")),
            loaded=bool(entry.get("Loaded", False)),
            special=bool(entry.get("Special", False)),
        )
        if record.special:
            continue
        records.append(record)

    records.sort(key=_sort_key)
    return records


class ProfileRegistry:
    """Profile store of a host, backed by the ``Win32_UserProfile`` CIM class."""

    def list_profiles(self, session: ManagementSession) -> List[ProfileRecord]:
        try:
            result = session.run_powershell(LIST_PROFILES_SCRIPT)
        except SSHError as exc:
            raise EnumerationError(f"Failed to list profiles on {session.target}: {exc}") from exc
        if result.exit_status != 0:
            raise EnumerationError(_describe(f"Failed to list profiles on {session.target}", result), result)

        try:
            return parse_profiles(session.target, result.stdout)
        except ValueError as exc:
            raise EnumerationError(f"Unexpected profile listing from {session.target}: {exc}", result) from exc

    def delete_profile(self, session: ManagementSession, record: ProfileRecord) -> CommandResult:
        if not _SID_PATTERN.fullmatch(record.sid):
            raise DeleteError(f"Profile {record.local_path} has no valid SID")

        script = _DELETE_PROFILE_TEMPLATE.format(sid=record.sid)
        try:
            result = session.run_powershell(script)
        except SSHError as exc:
            raise DeleteError(f"Failed to remove profile {record.local_path}: {exc}") from exc
        if result.exit_status != 0:
            raise DeleteError(_describe(f"Failed to remove profile {record.local_path}", result), result)
        return result


__all__ = [
    "DeleteError",
    "EnumerationError",
    "LIST_PROFILES_SCRIPT",
    "ProfileRegistry",
    "ProfileRegistryError",
    "parse_profiles",
]
