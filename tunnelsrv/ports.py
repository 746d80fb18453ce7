"""Allocation and reservation of public TCP/UDP ports for proxies."""

from __future__ import annotations

import os
import random
import socket
import threading
import time
import weakref
from collections.abc import Iterable
from dataclasses import dataclass, field

__all__ = [
    "MIN_PORT",
    "MAX_PORT",
    "MAX_PORT_RESERVED_DURATION",
    "CLEAN_RESERVED_PORTS_INTERVAL",
    "PortError",
    "PortAlreadyUsedError",
    "PortNotAllowedError",
    "PortUnavailableError",
    "NoAvailablePortError",
    "PortContext",
    "PortManager",
]

MIN_PORT = 1
MAX_PORT = 65535
MAX_PORT_RESERVED_DURATION = 24 * 60 * 60.0
CLEAN_RESERVED_PORTS_INTERVAL = 60 * 60.0
_MAX_RANDOM_TRIES = 5


class PortError(Exception):
    """Base class for port allocation failures."""


class PortAlreadyUsedError(PortError):
    def __init__(self) -> None:
        super().__init__("port already used")


class PortNotAllowedError(PortError):
    def __init__(self) -> None:
        super().__init__("port not allowed")


class PortUnavailableError(PortError):
    def __init__(self) -> None:
        super().__init__("port unavailable")


class NoAvailablePortError(PortError):
    def __init__(self) -> None:
        super().__init__("no available port")


@dataclass
class PortContext:
    """Who holds a port, and since when (monotonic seconds)."""

    proxy_name: str
    port: int = 0
    closed: bool = False
    update_time: float = field(default_factory=time.monotonic)


def _clean_periodically(ref: "weakref.ref[PortManager]", interval: float) -> None:
    while True:
        time.sleep(interval)
        manager = ref()
        if manager is None:
            return
        manager.clean_reserved()
        del manager


class PortManager:
    """Hands out ports to proxies and remembers which proxy last had which port."""

    def __init__(
        self,
        net_type: str,
        bind_addr: str,
        allow_ports: Iterable[int] | None = None,
        *,
        clean_interval: float | None = CLEAN_RESERVED_PORTS_INTERVAL,
    ) -> None:
        if net_type not in ("tcp", "udp"):
            raise ValueError(f"unsupported network type {net_type!r}")
        self.net_type = net_type
        self.bind_addr = bind_addr
        self.reserved_ports: dict[str, PortContext] = {}
        self.used_ports: dict[int, PortContext] = {}
        allowed = set(allow_ports or ())
        self.free_ports: set[int] = allowed or set(range(MIN_PORT, MAX_PORT + 1))
        self._lock = threading.Lock()
        if clean_interval:
            threading.Thread(
                target=_clean_periodically,
                args=(weakref.ref(self), clean_interval),
                daemon=True,
            ).start()

    def acquire(self, name: str, port: int) -> int:
        """Take ``port`` for proxy ``name``; 0 asks for any port. Returns the port."""
        ctx = PortContext(proxy_name=name)
        with self._lock:
            if port == 0:
                reserved = self.reserved_ports.get(name)
                if reserved is not None and self._is_available(reserved.port):
                    return self._take(reserved.port, ctx)
                count = min(_MAX_RANDOM_TRIES, len(self.free_ports))
                for candidate in random.sample(tuple(self.free_ports), count):
                    if self._is_available(candidate):
                        return self._take(candidate, ctx)
                raise NoAvailablePortError()
            if port in self.free_ports:
                if self._is_available(port):
                    return self._take(port, ctx)
                raise PortUnavailableError()
            if port in self.used_ports:
                raise PortAlreadyUsedError()
            raise PortNotAllowedError()

    def release(self, port: int) -> None:
        """Give ``port`` back; its reservation is kept for a while."""
        with self._lock:
            ctx = self.used_ports.pop(port, None)
            if ctx is not None:
                self.free_ports.add(port)
                ctx.closed = True
                ctx.update_time = time.monotonic()

    def clean_reserved(self) -> None:
        """Forget reservations of ports released longer ago than the reserve time."""
        now = time.monotonic()
        with self._lock:
            expired = [
                name
                for name, ctx in self.reserved_ports.items()
                if ctx.closed and now - ctx.update_time > MAX_PORT_RESERVED_DURATION
            ]
            for name in expired:
                del self.reserved_ports[name]

    def _take(self, port: int, ctx: PortContext) -> int:
        ctx.port = port
        self.used_ports[port] = ctx
        self.reserved_ports[ctx.proxy_name] = ctx
        self.free_ports.discard(port)
        return port

    def _is_available(self, port: int) -> bool:
        kind = socket.SOCK_DGRAM if self.net_type == "udp" else socket.SOCK_STREAM
        try:
            infos = socket.getaddrinfo(
                self.bind_addr or None, port, type=kind, flags=socket.AI_PASSIVE
            )
            family, _, _, _, address = infos[0]
            with socket.socket(family, kind) as sock:
                if kind == socket.SOCK_STREAM:
                    if os.name != "nt":
                        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                    sock.bind(address)
                    sock.listen()
                else:
                    sock.bind(address)
        except OSError:
            return False
        return True