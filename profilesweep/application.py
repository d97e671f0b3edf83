"""Wiring of the concrete probe, session and registry implementations."""
from __future__ import annotations

import os
from typing import Optional, Sequence

from .config import CONFIG_ENV, SweepConfig, load_config, resolve_config_path
from .connectivity import ConnectivityProbe
from .orchestrator import Orchestrator
from .preconditions import Precondition, default_preconditions
from .registry import ProfileRegistry
from .sessions import SessionFactory


def load_sweep_config(config_path: Optional[str] = None) -> SweepConfig:
    """Load configuration from ``config_path`` or the environment."""

    return load_config(resolve_config_path(config_path or os.getenv(CONFIG_ENV)))


def build_orchestrator(
    config: SweepConfig,
    *,
    max_concurrency: Optional[int] = None,
    preconditions: Optional[Sequence[Precondition]] = None,
) -> Orchestrator:
    settings = config.settings
    return Orchestrator(
        ConnectivityProbe(config.inventory, timeout=settings.probe_timeout),
        SessionFactory(config.inventory, settings),
        ProfileRegistry(),
        max_concurrency=settings.max_concurrency if max_concurrency is None else max_concurrency,
        preconditions=default_preconditions() if preconditions is None else preconditions,
    )


__all__ = ["build_orchestrator", "load_sweep_config"]
