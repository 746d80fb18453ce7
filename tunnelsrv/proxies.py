"""Registry of the proxies currently running on the server, by name."""

from __future__ import annotations

import threading
from typing import Any

__all__ = ["ProxyManager"]


class ProxyManager:
    """Proxies indexed by their unique name."""

    def __init__(self) -> None:
        self._proxies: dict[str, Any] = {}
        self._lock = threading.RLock()

    def add(self, name: str, proxy: Any) -> None:
        """Register ``proxy`` under ``name``; the name must not be taken yet."""
        with self._lock:
            if name in self._proxies:
                raise ValueError(f"proxy name [{name}] is already in use")
            self._proxies[name] = proxy

    def remove(self, name: str) -> None:
        """Forget the proxy registered under ``name``, if any."""
        with self._lock:
            self._proxies.pop(name, None)

    def get(self, name: str) -> Any | None:
        """Return the proxy registered under ``name``, or None."""
        with self._lock:
            return self._proxies.get(name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._proxies

    def __len__(self) -> int:
        with self._lock:
            return len(self._proxies)