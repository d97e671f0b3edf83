"""Capabilities that must be present before any host is contacted."""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Protocol, Sequence

from .models import is_local_target
from .sessions import find_local_powershell


class PreconditionError(RuntimeError):
    """Raised when a required capability is missing; aborts the whole run."""


class Precondition(Protocol):
    def check(self, targets: Sequence[str]) -> None:
        ...


class LocalShellAvailable:
    """Verify that PowerShell exists when the local host is targeted."""

    def __init__(self, locate: Callable[[], Optional[str]] = find_local_powershell) -> None:
        self._locate = locate

    def check(self, targets: Sequence[str]) -> None:
        if not any(is_local_target(target) for target in targets):
            return
        if self._locate() is None:
            raise PreconditionError(
                "PowerShell (powershell or pwsh) is required to manage profiles on the local host."
            )


def check_all(preconditions: Iterable[Precondition], targets: Sequence[str]) -> None:
    for precondition in preconditions:
        precondition.check(targets)


def default_preconditions() -> tuple[Precondition, ...]:
    return (LocalShellAvailable(),)


__all__ = [
    "LocalShellAvailable",
    "Precondition",
    "PreconditionError",
    "check_all",
    "default_preconditions",
]
