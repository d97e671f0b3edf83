"""Inventory and clean up Windows user profiles across many hosts."""

from __future__ import annotations

from typing import Any

from .models import ErrorKind, IdleDuration, Outcome, ProfileRecord, TaskResult
from .orchestrator import Orchestrator
from .preconditions import PreconditionError
from .report import OutcomeAggregator, Report


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP API application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "ErrorKind",
    "IdleDuration",
    "Orchestrator",
    "Outcome",
    "OutcomeAggregator",
    "PreconditionError",
    "ProfileRecord",
    "Report",
    "TaskResult",
    "create_app",
]
