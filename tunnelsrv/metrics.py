"""Server-wide metrics hooks and the process-wide registry for them."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass

__all__ = [
    "MetricKind",
    "MetricEvent",
    "ServerMetrics",
    "NoopServerMetrics",
    "register",
    "current",
]


class MetricKind(enum.Enum):
    """The kinds of event a metrics receiver is told about."""

    NEW_CLIENT = "new_client"
    CLOSE_CLIENT = "close_client"
    NEW_PROXY = "new_proxy"
    CLOSE_PROXY = "close_proxy"
    OPEN_CONNECTION = "open_connection"
    CLOSE_CONNECTION = "close_connection"
    TRAFFIC_IN = "traffic_in"
    TRAFFIC_OUT = "traffic_out"


@dataclass(frozen=True)
class MetricEvent:
    """One server event, as handed to :meth:`ServerMetrics.record`."""

    kind: MetricKind
    name: str = ""
    proxy_type: str = ""
    traffic_bytes: int = 0


class ServerMetrics:
    """Receiver of server events: clients, proxies, connections and traffic.

    Each event method builds a :class:`MetricEvent` and passes it to
    :meth:`record`. Subclasses either implement :meth:`record` or override
    the event methods themselves.
    """

    def record(self, event: MetricEvent) -> bool:
        """Handle one event; return whether it was kept."""
        raise NotImplementedError(f"{type(self).__name__} does not record {event.kind.value}")

    def new_client(self) -> None:
        """A client has logged in."""
        self.record(MetricEvent(MetricKind.NEW_CLIENT))

    def close_client(self) -> None:
        """A client has gone away."""
        self.record(MetricEvent(MetricKind.CLOSE_CLIENT))

    def new_proxy(self, name: str, proxy_type: str) -> None:
        """A proxy has been registered."""
        self.record(MetricEvent(MetricKind.NEW_PROXY, name, proxy_type))

    def close_proxy(self, name: str, proxy_type: str) -> None:
        """A proxy has been closed."""
        self.record(MetricEvent(MetricKind.CLOSE_PROXY, name, proxy_type))

    def open_connection(self, name: str, proxy_type: str) -> None:
        """A user connection has been opened through a proxy."""
        self.record(MetricEvent(MetricKind.OPEN_CONNECTION, name, proxy_type))

    def close_connection(self, name: str, proxy_type: str) -> None:
        """A user connection through a proxy has been closed."""
        self.record(MetricEvent(MetricKind.CLOSE_CONNECTION, name, proxy_type))

    def add_traffic_in(self, name: str, proxy_type: str, traffic_bytes: int) -> None:
        """Count bytes that came in through a proxy."""
        self.record(MetricEvent(MetricKind.TRAFFIC_IN, name, proxy_type, traffic_bytes))

    def add_traffic_out(self, name: str, proxy_type: str, traffic_bytes: int) -> None:
        """Count bytes that went out through a proxy."""
        self.record(MetricEvent(MetricKind.TRAFFIC_OUT, name, proxy_type, traffic_bytes))


class NoopServerMetrics(ServerMetrics):
    """Metrics receiver that discards every event."""

    def record(self, event: MetricEvent) -> bool:
        """Discard the event and report that it was not kept."""
        return False


_lock = threading.Lock()
_active: ServerMetrics = NoopServerMetrics()
_registered = False


def register(metrics: ServerMetrics) -> ServerMetrics:
    """Install ``metrics`` as the server metrics; only the first call takes effect.

    Returns the metrics receiver that is in effect afterwards.
    """
    global _active, _registered
    if not isinstance(metrics, ServerMetrics):
        raise TypeError("metrics must be a ServerMetrics instance")
    with _lock:
        if not _registered:
            _active = metrics
            _registered = True
        return _active


def current() -> ServerMetrics:
    """Return the metrics receiver in effect."""
    return _active