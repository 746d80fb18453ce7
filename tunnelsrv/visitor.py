"""Listeners for secret proxies that visitors reach by signed key."""

from __future__ import annotations

import hashlib
import threading
from collections import deque
from collections.abc import Callable
from typing import Any

__all__ = ["VisitorError", "CustomListener", "VisitorManager"]

DEFAULT_BACKLOG = 64


class VisitorError(Exception):
    """A visitor connection or listener could not be set up."""


def _auth_key(token: str, timestamp: int) -> str:
    return hashlib.md5(f"{token}{timestamp}".encode()).hexdigest()


class CustomListener:
    """A listener fed with connections by the server instead of a socket."""

    def __init__(self, backlog: int = DEFAULT_BACKLOG) -> None:
        self._backlog = backlog
        self._conns: deque[Any] = deque()
        self._cond = threading.Condition()
        self.closed = False

    def put_conn(self, conn: Any) -> None:
        """Queue a connection for the next accept."""
        with self._cond:
            if self.closed:
                raise VisitorError("listener closed")
            if len(self._conns) >= self._backlog:
                raise VisitorError("listener backlog is full")
            self._conns.append(conn)
            self._cond.notify()

    def accept(self, timeout: float | None = None) -> Any:
        """Return the next queued connection, waiting up to ``timeout`` seconds."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._conns or self.closed, timeout):
                raise TimeoutError("no connection arrived in time")
            if self._conns:
                return self._conns.popleft()
            raise VisitorError("listener closed")

    def close(self) -> None:
        """Stop accepting; waiting callers are woken."""
        with self._cond:
            self.closed = True
            self._cond.notify_all()


class VisitorManager:
    """Listeners of secret proxies, keyed by proxy name, with their secret keys."""

    def __init__(self, auth_key: Callable[[str, int], str] = _auth_key) -> None:
        self._auth_key = auth_key
        self._listeners: dict[str, CustomListener] = {}
        self._secret_keys: dict[str, str] = {}
        self._lock = threading.Lock()

    def listen(self, name: str, sk: str) -> CustomListener:
        """Create the listener for proxy ``name`` guarded by secret key ``sk``."""
        with self._lock:
            if name in self._listeners:
                raise VisitorError(f"custom listener for [{name}] is repeated")
            listener = CustomListener()
            self._listeners[name] = listener
            self._secret_keys[name] = sk
            return listener

    def new_conn(self, name: str, conn: Any, timestamp: int, sign_key: str) -> None:
        """Hand a visitor connection to proxy ``name`` if its signature is valid."""
        with self._lock:
            listener = self._listeners.get(name)
            if listener is None:
                raise VisitorError(f"custom listener for [{name}] doesn't exist")
            if self._auth_key(self._secret_keys[name], timestamp) != sign_key:
                raise VisitorError(f"visitor connection of [{name}] auth failed")
            listener.put_conn(conn)

    def close_listener(self, name: str) -> None:
        """Forget the listener of proxy ``name``."""
        with self._lock:
            self._listeners.pop(name, None)
            self._secret_keys.pop(name, None)