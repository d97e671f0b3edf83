"""Host inventory and orchestrator settings loaded from YAML."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

import yaml

from .ssh import DEFAULT_MAX_CHANNELS

CONFIG_ENV = "PROFILESWEEP_CONFIG"
MAX_CONCURRENCY_ENV = "PROFILESWEEP_MAX_CONCURRENCY"

DEFAULT_MAX_CONCURRENCY = 50
DEFAULT_SSH_PORT = 22


class ConfigError(ValueError):
    """Raised when the configuration file is malformed."""


def _resolve_path(raw: object, base_path: Path | None) -> Path:
    candidate = Path(str(raw)).expanduser()
    if not candidate.is_absolute() and base_path is not None:
        candidate = base_path / candidate
    return candidate.resolve(strict=False)


@dataclass(frozen=True)
class HostConfig:
    """Connection settings for one managed Windows host."""

    name: str
    hostname: str
    username: str
    private_key_path: Path
    port: int = DEFAULT_SSH_PORT
    passphrase: Optional[str] = None
    allow_unknown_hosts: bool = False
    known_hosts_file: Optional[Path] = None
    max_channels: Optional[int] = None

    @staticmethod
    def from_dict(
        data: Mapping[str, object],
        base_path: Path | None = None,
        defaults: Mapping[str, object] | None = None,
    ) -> "HostConfig":
        """Create a :class:`HostConfig`, filling gaps from ``defaults``."""
        merged: Dict[str, object] = dict(defaults or {})
        merged.update({key: value for key, value in data.items() if value is not None})
        merged.setdefault("hostname", merged.get("name"))

        required_fields = {"name", "hostname", "username", "private_key_path"}
        missing = {key for key in required_fields if not merged.get(key)}
        if missing:
            raise ConfigError(f"Missing required host configuration fields: {', '.join(sorted(missing))}")

        known_hosts = merged.get("known_hosts_file")
        max_channels = merged.get("max_channels")
        if max_channels is not None:
            try:
                max_channels = int(max_channels)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Invalid max_channels for host {merged['name']}: {exc}") from exc
            if max_channels < 1:
                raise ConfigError("max_channels must be at least 1")
        return HostConfig(
            name=str(merged["name"]),
            hostname=str(merged["hostname"]),
            username=str(merged["username"]),
            port=int(merged.get("port", DEFAULT_SSH_PORT)),
            private_key_path=_resolve_path(merged["private_key_path"], base_path),
            passphrase=str(merged["passphrase"]) if merged.get("passphrase") is not None else None,
            allow_unknown_hosts=bool(merged.get("allow_unknown_hosts", False)),
            known_hosts_file=_resolve_path(known_hosts, base_path) if known_hosts else None,
            max_channels=max_channels,
        )


class HostInventory:
    """Read-only lookup of host connection settings.

    Hosts not listed explicitly are built from the ``defaults`` section, using
    the target name as hostname. Without defaults such hosts are unknown.
    """

    def __init__(
        self,
        hosts: Iterable[HostConfig] = (),
        *,
        defaults: Mapping[str, object] | None = None,
        base_path: Path | None = None,
    ) -> None:
        self._hosts: Dict[str, HostConfig] = {host.name.lower(): host for host in hosts}
        self._defaults = dict(defaults or {})
        self._base_path = base_path

    def resolve(self, name: str) -> HostConfig:
        host = self._hosts.get(name.lower())
        if host is not None:
            return host
        if not self._defaults:
            raise KeyError(f"No connection settings configured for host '{name}'")
        try:
            return HostConfig.from_dict({"name": name}, base_path=self._base_path, defaults=self._defaults)
        except ConfigError as exc:
            raise KeyError(f"Incomplete default connection settings for host '{name}': {exc}") from exc

    def port_for(self, name: str) -> int:
        host = self._hosts.get(name.lower())
        if host is not None:
            return host.port
        return int(self._defaults.get("port", DEFAULT_SSH_PORT))

    def list(self) -> Iterable[HostConfig]:
        return self._hosts.values()


@dataclass(frozen=True)
class OrchestratorSettings:
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    probe_timeout: float = 3.0
    connect_timeout: float = 20.0
    command_timeout: float = 120.0
    max_channels: int = DEFAULT_MAX_CHANNELS

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "OrchestratorSettings":
        try:
            settings = OrchestratorSettings(
                max_concurrency=int(data.get("max_concurrency", DEFAULT_MAX_CONCURRENCY)),
                probe_timeout=float(data.get("probe_timeout", 3.0)),
                connect_timeout=float(data.get("connect_timeout", 20.0)),
                command_timeout=float(data.get("command_timeout", 120.0)),
                max_channels=int(data.get("max_channels", DEFAULT_MAX_CHANNELS)),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid orchestrator settings: {exc}") from exc
        if settings.max_concurrency < 1:
            raise ConfigError("max_concurrency must be at least 1")
        if settings.max_channels < 1:
            raise ConfigError("max_channels must be at least 1")
        return settings


@dataclass(frozen=True)
class SweepConfig:
    inventory: HostInventory = field(default_factory=HostInventory)
    settings: OrchestratorSettings = field(default_factory=OrchestratorSettings)


def load_config(config_path: Path) -> SweepConfig:
    """Load the inventory and settings from a YAML file.

    A missing file is not an error: only the local host can be targeted then.
    """
    if not config_path.exists():
        return apply_env_overrides(SweepConfig())

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must contain a mapping at the top level")

    config_dir = config_path.parent
    defaults = raw.get("defaults") or {}
    hosts = [HostConfig.from_dict(item, base_path=config_dir, defaults=defaults) for item in raw.get("hosts") or []]
    inventory = HostInventory(hosts, defaults=defaults, base_path=config_dir)
    settings = OrchestratorSettings.from_dict(raw.get("orchestrator") or {})
    return apply_env_overrides(SweepConfig(inventory=inventory, settings=settings))


def apply_env_overrides(config: SweepConfig) -> SweepConfig:
    raw = os.getenv(MAX_CONCURRENCY_ENV)
    if not raw:
        return config
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{MAX_CONCURRENCY_ENV} must be an integer") from exc
    if value < 1:
        raise ConfigError(f"{MAX_CONCURRENCY_ENV} must be at least 1")
    return replace(config, settings=replace(config.settings, max_concurrency=value))


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "hosts.yaml").resolve(strict=False)


__all__ = [
    "CONFIG_ENV",
    "ConfigError",
    "HostConfig",
    "HostInventory",
    "OrchestratorSettings",
    "SweepConfig",
    "apply_env_overrides",
    "load_config",
    "resolve_config_path",
]
