"""Scoped management sessions against local and remote hosts."""

from __future__ import annotations

import logging
import shutil
import subprocess
from contextlib import contextmanager
from typing import Generator, Optional, Protocol, Sequence

from .config import HostInventory, OrchestratorSettings
from .models import is_local_target
from .ssh import CommandResult, SSHClientFactory, SSHCommandRunner, SSHError, SSHTarget, powershell_command

logger = logging.getLogger("profilesweep.sessions")

POWERSHELL_CANDIDATES = ("powershell", "pwsh")


class SessionError(SSHError):
    """Raised when a management session cannot be opened or used."""


class CommandRunner(Protocol):
    def run(self, args: Sequence[str], timeout: float = ...) -> CommandResult:
        ...


def find_local_powershell() -> Optional[str]:
    for candidate in POWERSHELL_CANDIDATES:
        path = shutil.which(candidate)
        if path:
            return path
    return None


class LocalCommandRunner:
    """Executes commands on the machine running the tool."""

    def run(self, args: Sequence[str], timeout: float = 120) -> CommandResult:
        try:
            completed = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SessionError(f"Local command '{args[0]}' is not available") from exc
        except subprocess.TimeoutExpired as exc:
            raise SessionError(f"Local command '{args[0]}' timed out after {timeout} seconds") from exc

        return CommandResult(
            command=tuple(args),
            exit_status=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )


class ManagementSession:
    """An open connection to one target's management shell."""

    def __init__(
        self,
        target: str,
        runner: CommandRunner,
        *,
        executable: str = "powershell",
        command_timeout: float = 120,
    ) -> None:
        self.target = target
        self._runner = runner
        self._executable = executable
        self._command_timeout = command_timeout

    def run_powershell(self, script: str) -> CommandResult:
        return self._runner.run(powershell_command(script, self._executable), timeout=self._command_timeout)


class SessionFactory:
    """Open :class:`ManagementSession` objects for targets.

    Remote hosts are reached over SSH using the inventory; the ``local``
    target runs PowerShell directly.
    """

    def __init__(self, inventory: HostInventory, settings: OrchestratorSettings | None = None) -> None:
        self._inventory = inventory
        self._settings = settings or OrchestratorSettings()

    @contextmanager
    def open(self, target: str) -> Generator[ManagementSession, None, None]:
        if is_local_target(target):
            executable = find_local_powershell()
            if executable is None:
                raise SessionError("PowerShell is not available on the local host")
            yield ManagementSession(
                target,
                LocalCommandRunner(),
                executable=executable,
                command_timeout=self._settings.command_timeout,
            )
            return

        try:
            host = self._inventory.resolve(target)
        except KeyError as exc:
            raise SessionError(str(exc.args[0]) if exc.args else str(exc)) from exc

        factory = SSHClientFactory(
            SSHTarget(
                hostname=host.hostname,
                port=host.port,
                username=host.username,
                private_key=str(host.private_key_path),
                passphrase=host.passphrase,
                allow_unknown_hosts=host.allow_unknown_hosts,
                known_hosts_path=host.known_hosts_file,
                connect_timeout=self._settings.connect_timeout,
            )
        )
        with factory.connect() as client:
            logger.debug("Opened SSH session to %s (%s:%s)", target, host.hostname, host.port)
            yield ManagementSession(
                target,
                SSHCommandRunner(client, max_channels=host.max_channels or self._settings.max_channels),
                command_timeout=self._settings.command_timeout,
            )
        logger.debug("Closed SSH session to %s", target)


__all__ = [
    "CommandRunner",
    "LocalCommandRunner",
    "ManagementSession",
    "SessionError",
    "SessionFactory",
    "find_local_powershell",
]
