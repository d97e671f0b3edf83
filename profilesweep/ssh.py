"""SSH transport to the OpenSSH server of remote Windows hosts.

Windows OpenSSH hands the command line to ``cmd.exe`` by default, so every
script is shipped as a PowerShell ``-EncodedCommand`` and the remaining
arguments are quoted for ``cmd.exe`` rather than a POSIX shell.
"""
from __future__ import annotations

import base64
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from io import StringIO
from pathlib import Path
from typing import Generator, Optional, Sequence

import paramiko

POWERSHELL_EXECUTABLE = "powershell"
# sshd MaxSessions default, Win32-OpenSSH included.
DEFAULT_MAX_CHANNELS = 10
_KEY_TYPES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


class SSHError(RuntimeError):
    """Raised when a host cannot be reached or driven over SSH."""


class HostKeyVerificationError(SSHError):
    """The host presented a key that is unknown or does not match."""

    def __init__(self, hostname: str, port: int, hint: str) -> None:
        super().__init__(f"Host key verification failed for {hostname}:{port}. {hint}")
        self.hostname = hostname
        self.port = port


@dataclass
class CommandResult:
    command: Sequence[str]
    exit_status: int
    stdout: str
    stderr: str


@dataclass
class SSHTarget:
    """Where and as whom to log in on a managed host."""

    hostname: str
    port: int
    username: str
    private_key: str
    passphrase: Optional[str] = None
    allow_unknown_hosts: bool = False
    known_hosts_path: Optional[Path] = None
    connect_timeout: float = 20.0


def powershell_command(script: str, executable: str = POWERSHELL_EXECUTABLE) -> list[str]:
    """Return the argv that runs ``script`` in a non-interactive PowerShell."""

    encoded = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
    return [executable, "-NoProfile", "-NonInteractive", "-EncodedCommand", encoded]


def _quote_for_cmd(arg: str) -> str:
    if arg and not any(ch in arg for ch in ' \t"&|<>^'):
        return arg
    return '"' + arg.replace('"', '""') + '"'


def _read_key(key_cls, source: str, passphrase: str | None, *, from_file: bool) -> paramiko.PKey:
    if from_file:
        return key_cls.from_private_key_file(source, password=passphrase)
    return key_cls.from_private_key(StringIO(source), password=passphrase)


def _load_private_key(private_key: str, passphrase: str | None) -> paramiko.PKey:
    """Load an Ed25519, ECDSA or RSA key given inline (PEM) or as a path."""

    source = private_key.strip()
    from_file = "-----BEGIN" not in source
    if from_file:
        path = Path(source).expanduser()
        if not path.is_file():
            raise SSHError(f"Private key file not found: {path}")
        source = str(path)

    last_error: Exception | None = None
    for key_cls in _KEY_TYPES:
        try:
            return _read_key(key_cls, source, passphrase, from_file=from_file)
        except paramiko.PasswordRequiredException as exc:
            raise SSHError("The private key is encrypted; set a passphrase for this host") from exc
        except OSError as exc:
            raise SSHError(f"Cannot read private key {source}: {exc}") from exc
        except paramiko.SSHException as exc:
            last_error = exc
    raise SSHError("Unsupported private key format or wrong passphrase") from last_error


def _host_key_policy(target: SSHTarget) -> paramiko.MissingHostKeyPolicy:
    return paramiko.AutoAddPolicy() if target.allow_unknown_hosts else paramiko.RejectPolicy()


def _translate_connect_error(target: SSHTarget, exc: Exception) -> SSHError:
    if isinstance(exc, paramiko.AuthenticationException):
        return SSHError(f"Authentication as {target.username} on {target.hostname} failed")
    if isinstance(exc, paramiko.BadHostKeyException):
        return HostKeyVerificationError(
            exc.hostname,
            target.port,
            "The stored key does not match; the host may have been reinstalled.",
        )
    if isinstance(exc, paramiko.SSHException) and "not found in known_hosts" in str(exc):
        return HostKeyVerificationError(
            target.hostname,
            target.port,
            "Add the host to the configured known hosts file or set allow_unknown_hosts.",
        )
    return SSHError(f"SSH connection to {target.hostname} failed: {exc}")


class SSHClientFactory:
    """Opens one authenticated paramiko client per managed host."""

    def __init__(self, target: SSHTarget) -> None:
        self._target = target

    @property
    def target(self) -> SSHTarget:
        return self._target

    @contextmanager
    def connect(self) -> Generator[paramiko.SSHClient, None, None]:
        target = self._target
        client = paramiko.SSHClient()
        try:
            try:
                if target.known_hosts_path:
                    client.load_host_keys(str(target.known_hosts_path))
                else:
                    client.load_system_host_keys()
            except OSError as exc:
                raise SSHError(f"Cannot read known hosts for {target.hostname}: {exc}") from exc
            client.set_missing_host_key_policy(_host_key_policy(target))

            pkey = _load_private_key(target.private_key, target.passphrase)
            try:
                client.connect(
                    hostname=target.hostname,
                    port=target.port,
                    username=target.username,
                    pkey=pkey,
                    timeout=target.connect_timeout,
                    look_for_keys=False,
                    allow_agent=False,
                )
            except (paramiko.SSHException, OSError) as exc:
                raise _translate_connect_error(target, exc) from exc
            yield client
        finally:
            client.close()


class SSHCommandRunner:
    """Runs commands on a connected client and waits for their exit status.

    Each command opens its own channel on the shared transport; at most
    ``max_channels`` are open at once so the server never refuses one.
    """

    def __init__(self, client: paramiko.SSHClient, *, max_channels: int = DEFAULT_MAX_CHANNELS) -> None:
        if max_channels < 1:
            raise ValueError("max_channels must be at least 1")
        self._client = client
        self._channels = threading.BoundedSemaphore(max_channels)

    def run(self, args: Sequence[str], timeout: float = 120) -> CommandResult:
        command_line = " ".join(_quote_for_cmd(arg) for arg in args)
        try:
            with self._channels:
                _stdin, stdout, stderr = self._client.exec_command(command_line, timeout=timeout)
                out = stdout.read().decode("utf-8", errors="replace")
                err = stderr.read().decode("utf-8", errors="replace")
                exit_status = stdout.channel.recv_exit_status()
        except TimeoutError as exc:
            raise SSHError(f"{args[0]} timed out after {timeout} seconds") from exc
        except paramiko.SSHException as exc:
            raise SSHError(f"Could not run {args[0]}: {exc}") from exc

        return CommandResult(command=tuple(args), exit_status=exit_status, stdout=out, stderr=err)


__all__ = [
    "DEFAULT_MAX_CHANNELS",
    "SSHError",
    "HostKeyVerificationError",
    "CommandResult",
    "SSHTarget",
    "SSHClientFactory",
    "SSHCommandRunner",
    "powershell_command",
]
