"""Reachability checks performed before a management session is attempted."""
from __future__ import annotations

import logging
import socket
from enum import Enum

from .config import HostInventory
from .models import is_local_target

logger = logging.getLogger("profilesweep.connectivity")


class Reachability(str, Enum):
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class ConnectivityProbe:
    """Check whether a host accepts TCP connections on its management port.

    Network failures are reported as :attr:`Reachability.UNREACHABLE`; the
    probe never raises for them.
    """

    def __init__(self, inventory: HostInventory, *, timeout: float = 3.0) -> None:
        self._inventory = inventory
        self._timeout = timeout

    def __call__(self, target: str) -> Reachability:
        return self.probe(target)

    def probe(self, target: str) -> Reachability:
        if is_local_target(target):
            return Reachability.REACHABLE

        try:
            host = self._inventory.resolve(target)
            address, port = host.hostname, host.port
        except KeyError:
            address, port = target, self._inventory.port_for(target)

        try:
            with socket.create_connection((address, port), timeout=self._timeout):
                pass
        except OSError as exc:
            logger.info("Host %s (%s:%s) is unreachable: %s", target, address, port, exc)
            return Reachability.UNREACHABLE
        return Reachability.REACHABLE


__all__ = ["ConnectivityProbe", "Reachability"]
