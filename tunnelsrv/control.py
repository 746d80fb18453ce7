"""Per-client control sessions and the registry that keys them by run id."""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from . import metrics
from .proxies import ProxyManager

__all__ = ["ControlClosedError", "Control", "ControlManager"]

log = logging.getLogger(__name__)

DEFAULT_MAX_POOL_COUNT = 5
DEFAULT_USER_CONN_TIMEOUT = 10.0
_EXTRA_POOL_CAPACITY = 10


class ControlClosedError(RuntimeError):
    """The control session has been closed."""

    def __init__(self, message: str = "control is closed") -> None:
        super().__init__(message)


def _close_quietly(obj: Any) -> None:
    close = getattr(obj, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as exc:  # a peer may already be gone
        log.debug("error while closing %r: %s", obj, exc)


class Control:
    """State of one logged-in client: its pool of work connections and its proxies.

    ``request_work_conn`` is called whenever the client should be asked for one
    more work connection; it is called ``pool_count`` times on creation.
    """

    def __init__(
        self,
        run_id: str,
        *,
        pool_count: int = 0,
        max_pool_count: int = DEFAULT_MAX_POOL_COUNT,
        user_conn_timeout: float = DEFAULT_USER_CONN_TIMEOUT,
        request_work_conn: Callable[[], None] | None = None,
        proxy_manager: ProxyManager | None = None,
        conn: Any = None,
    ) -> None:
        self.run_id = run_id
        self.pool_count = min(pool_count, max_pool_count)
        self.user_conn_timeout = user_conn_timeout
        self.conn = conn
        self.proxies: dict[str, Any] = {}
        self.last_ping = time.monotonic()
        self._request_work_conn = request_work_conn or (lambda: None)
        self._proxy_manager = proxy_manager
        self._capacity = max(self.pool_count, 0) + _EXTRA_POOL_CAPACITY
        self._pool: deque[Any] = deque()
        self._cond = threading.Condition()
        self._proxies_lock = threading.Lock()
        self._closed = False
        self._done = threading.Event()
        for _ in range(self.pool_count):
            self._request_work_conn()

    @property
    def closed(self) -> bool:
        """Whether the session has been closed."""
        return self._closed

    @property
    def pooled(self) -> int:
        """Number of work connections waiting in the pool."""
        with self._cond:
            return len(self._pool)

    def register_work_conn(self, conn: Any) -> None:
        """Put a new work connection from the client into the pool."""
        with self._cond:
            if self._closed:
                raise ControlClosedError()
            if len(self._pool) >= self._capacity:
                log.debug("work connection pool is full, discarding")
                raise RuntimeError("work connection pool is full, discarding")
            self._pool.append(conn)
            self._cond.notify()
        log.debug("new work connection registered")

    def get_work_conn(self) -> Any:
        """Take a work connection, asking the client for one if the pool is empty.

        Raises TimeoutError if none arrives within ``user_conn_timeout`` seconds
        and ControlClosedError if the session closes first.
        """
        with self._cond:
            if self._pool:
                conn = self._pool.popleft()
                log.debug("get work connection from pool")
            elif self._closed:
                raise ControlClosedError()
            else:
                conn = None

        if conn is None:
            self._request_work_conn()
            with self._cond:
                self._cond.wait_for(
                    lambda: self._pool or self._closed, self.user_conn_timeout
                )
                if self._pool:
                    conn = self._pool.popleft()
                elif self._closed:
                    log.warning("no work connections available, control is closed")
                    raise ControlClosedError()
                else:
                    log.warning("timeout trying to get work connection")
                    raise TimeoutError("timeout trying to get work connection")

        # Replace the connection just taken out of the pool.
        with contextlib.suppress(Exception):
            self._request_work_conn()
        return conn

    def replaced(self, new_control: Control) -> None:
        """Give way to ``new_control``, which logged in with the same run id."""
        log.info("Replaced by client [%s]", new_control.run_id)
        self.run_id = ""
        self.close()

    def close(self) -> None:
        """Shut the session down: drop pooled connections and close its proxies."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            pending = list(self._pool)
            self._pool.clear()
            self._cond.notify_all()

        if self.conn is not None:
            _close_quietly(self.conn)
        for conn in pending:
            _close_quietly(conn)

        receiver = metrics.current()
        with self._proxies_lock:
            proxies, self.proxies = self.proxies, {}
        for name, proxy in proxies.items():
            _close_quietly(proxy)
            if self._proxy_manager is not None:
                self._proxy_manager.remove(name)
            receiver.close_proxy(name, getattr(proxy, "proxy_type", ""))

        log.info("client exit success")
        receiver.close_client()
        self._done.set()

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until the session is closed; False if ``timeout`` ran out first."""
        return self._done.wait(timeout)


class ControlManager:
    """Control sessions indexed by client run id."""

    def __init__(self) -> None:
        self._controls: dict[str, Control] = {}
        self._lock = threading.RLock()

    def add(self, run_id: str, control: Control) -> Control | None:
        """Register ``control``; a previous one with the same id is replaced and returned."""
        with self._lock:
            old = self._controls.get(run_id)
            if old is not None:
                old.replaced(control)
            self._controls[run_id] = control
            return old

    def remove(self, run_id: str, control: Control) -> None:
        """Forget ``run_id`` only if it still maps to ``control``."""
        with self._lock:
            if self._controls.get(run_id) is control:
                del self._controls[run_id]

    def get(self, run_id: str) -> Control | None:
        """Return the control registered under ``run_id``, or None."""
        with self._lock:
            return self._controls.get(run_id)