"""Read-only dashboard queries over server settings, proxies and their statistics."""

from __future__ import annotations

import copy
import dataclasses
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from .proxies import ProxyManager

__all__ = [
    "ONLINE",
    "OFFLINE",
    "ProxyStats",
    "ServerStats",
    "ProxyTraffic",
    "StatsCollector",
    "DashboardAPI",
    "conf_fields_for",
]

log = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"

_BASE_FIELDS: dict[str, Any] = {
    "proxy_name": "",
    "proxy_type": "",
    "use_encryption": False,
    "use_compression": False,
    "group": "",
    "group_key": "",
    "proxy_protocol_version": "",
    "metas": None,
    "local_ip": "",
    "local_port": 0,
    "plugin": "",
    "plugin_params": None,
}

_DOMAIN_FIELDS: dict[str, Any] = {
    "custom_domains": None,
    "subdomain": "",
}

_FIELDS_BY_TYPE: dict[str, dict[str, Any]] = {
    "tcp": {**_BASE_FIELDS, "remote_port": 0},
    "tcpmux": {**_BASE_FIELDS, **_DOMAIN_FIELDS, "multiplexer": ""},
    "udp": {**_BASE_FIELDS, "remote_port": 0},
    "http": {
        **_BASE_FIELDS,
        **_DOMAIN_FIELDS,
        "locations": None,
        "host_header_rewrite": "",
    },
    "https": {**_BASE_FIELDS, **_DOMAIN_FIELDS},
    "stcp": dict(_BASE_FIELDS),
    "xtcp": dict(_BASE_FIELDS),
}


def conf_fields_for(proxy_type: str) -> dict[str, Any] | None:
    """Fields shown for a proxy type, mapped to their defaults; None if the type is unknown.

    A proxy of an unknown type has its configuration shown whole.
    """
    fields = _FIELDS_BY_TYPE.get(proxy_type)
    return copy.deepcopy(fields) if fields is not None else None


@dataclass
class ProxyStats:
    """Statistics of one proxy as kept by the stats collector."""

    name: str
    type: str
    today_traffic_in: int = 0
    today_traffic_out: int = 0
    cur_conns: int = 0
    last_start_time: str = ""
    last_close_time: str = ""


@dataclass
class ServerStats:
    """Server-wide statistics."""

    total_traffic_in: int = 0
    total_traffic_out: int = 0
    cur_conns: int = 0
    client_counts: int = 0
    proxy_type_counts: dict[str, int] = field(default_factory=dict)


@dataclass
class ProxyTraffic:
    """Recent daily traffic history of one proxy."""

    name: str
    traffic_in: list[int] = field(default_factory=list)
    traffic_out: list[int] = field(default_factory=list)


class StatsCollector(Protocol):
    """Source of the statistics the dashboard shows."""

    def get_server(self) -> ServerStats: ...

    def get_proxies_by_type(self, proxy_type: str) -> Iterable[ProxyStats]: ...

    def get_proxies_by_type_and_name(
        self, proxy_type: str, name: str
    ) -> ProxyStats | None: ...

    def get_proxy_traffic(self, name: str) -> ProxyTraffic | None: ...


def _conf_view(proxy: Any, proxy_type: str) -> dict[str, Any]:
    """The proxy's configuration as plain JSON data, narrowed to its type's fields."""
    conf = getattr(proxy, "conf", None)
    if dataclasses.is_dataclass(conf) and not isinstance(conf, type):
        conf = dataclasses.asdict(conf)
    if not isinstance(conf, Mapping):
        raise TypeError("proxy configuration is not a mapping")
    data = json.loads(json.dumps(dict(conf)))
    fields = conf_fields_for(proxy_type)
    if fields is None:
        return data
    return {name: data.get(name, default) for name, default in fields.items()}


def _stats_view(stats: ProxyStats) -> dict[str, Any]:
    return {
        "today_traffic_in": stats.today_traffic_in,
        "today_traffic_out": stats.today_traffic_out,
        "cur_conns": stats.cur_conns,
        "last_start_time": stats.last_start_time,
        "last_close_time": stats.last_close_time,
    }


class DashboardAPI:
    """Answers the dashboard's queries as JSON-ready dictionaries."""

    def __init__(
        self,
        stats: StatsCollector,
        proxy_manager: ProxyManager,
        *,
        version: str = "",
        bind_port: int = 0,
        bind_udp_port: int = 0,
        vhost_http_port: int = 0,
        vhost_https_port: int = 0,
        kcp_bind_port: int = 0,
        subdomain_host: str = "",
        max_pool_count: int = 0,
        max_ports_per_client: int = 0,
        heart_beat_timeout: int = 0,
    ) -> None:
        self.stats = stats
        self.proxy_manager = proxy_manager
        self.version = version
        self.bind_port = bind_port
        self.bind_udp_port = bind_udp_port
        self.vhost_http_port = vhost_http_port
        self.vhost_https_port = vhost_https_port
        self.kcp_bind_port = kcp_bind_port
        self.subdomain_host = subdomain_host
        self.max_pool_count = max_pool_count
        self.max_ports_per_client = max_ports_per_client
        self.heart_beat_timeout = heart_beat_timeout

    def server_info(self) -> dict[str, Any]:
        """Server settings together with server-wide statistics."""
        server = self.stats.get_server()
        return {
            "version": self.version,
            "bind_port": self.bind_port,
            "bind_udp_port": self.bind_udp_port,
            "vhost_http_port": self.vhost_http_port,
            "vhost_https_port": self.vhost_https_port,
            "kcp_bind_port": self.kcp_bind_port,
            "subdomain_host": self.subdomain_host,
            "max_pool_count": self.max_pool_count,
            "max_ports_per_client": self.max_ports_per_client,
            "heart_beat_timeout": self.heart_beat_timeout,
            "total_traffic_in": server.total_traffic_in,
            "total_traffic_out": server.total_traffic_out,
            "cur_conns": server.cur_conns,
            "client_counts": server.client_counts,
            "proxy_type_count": dict(server.proxy_type_counts),
        }

    def proxies_by_type(self, proxy_type: str) -> dict[str, Any]:
        """All proxies of one type; those whose configuration cannot be read are left out."""
        proxies = []
        for ps in self.stats.get_proxies_by_type(proxy_type):
            info: dict[str, Any] = {"name": ps.name, "conf": None}
            proxy = self.proxy_manager.get(ps.name)
            if proxy is not None:
                try:
                    info["conf"] = _conf_view(proxy, ps.type)
                except (TypeError, ValueError) as exc:
                    log.warning("read proxy [%s] conf info error: %s", ps.name, exc)
                    continue
                info["status"] = ONLINE
            else:
                info["status"] = OFFLINE
            info.update(_stats_view(ps))
            proxies.append(info)
        return {"proxies": proxies}

    def proxy_by_type_and_name(self, proxy_type: str, name: str) -> dict[str, Any]:
        """One proxy's configuration and statistics.

        Raises LookupError if no statistics exist for it and ValueError if its
        configuration cannot be read.
        """
        ps = self.stats.get_proxies_by_type_and_name(proxy_type, name)
        if ps is None:
            raise LookupError("no proxy info found")
        info: dict[str, Any] = {"name": name, "conf": None}
        proxy = self.proxy_manager.get(name)
        if proxy is not None:
            try:
                info["conf"] = _conf_view(proxy, ps.type)
            except (TypeError, ValueError) as exc:
                log.warning("read proxy [%s] conf info error: %s", ps.name, exc)
                raise ValueError("parse conf error") from exc
            info["status"] = ONLINE
        else:
            info["status"] = OFFLINE
        info.update(_stats_view(ps))
        return info

    def proxy_traffic(self, name: str) -> dict[str, Any]:
        """Daily traffic history of one proxy; LookupError if it is unknown."""
        traffic = self.stats.get_proxy_traffic(name)
        if traffic is None:
            raise LookupError("no proxy info found")
        return {
            "name": name,
            "traffic_in": list(traffic.traffic_in),
            "traffic_out": list(traffic.traffic_out),
        }