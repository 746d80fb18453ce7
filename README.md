# tunnelsrv

Server-side bookkeeping for a reverse tunnel: which public port a client's
proxy gets, how secret proxies accept visitor connections, how each
logged-in client's pool of work connections is kept, and what a dashboard
shows about the server and its proxies.

It has no dependencies outside the standard library.

## Install

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Modules

### `tunnelsrv.ports`

`PortManager(net_type, bind_addr, allow_ports=None, *, clean_interval=3600)`
hands out `"tcp"` or `"udp"` ports from `allow_ports`, or from the whole
range `MIN_PORT`–`MAX_PORT` (1–65535) when none are given. A port counts as
available only if a socket can be bound to it on `bind_addr`.

- `acquire(name, port)` takes `port` for the proxy `name` and returns it.
  With `port == 0` it first tries the port last held by `name`, then up to
  five randomly chosen free ports.
- `release(port)` puts the port back among the free ones; the reservation
  for the proxy name is kept.
- `clean_reserved()` forgets reservations of ports released more than
  24 hours ago. Unless `clean_interval` is `None` or 0, a daemon thread calls
  it every `clean_interval` seconds.

Failures raise subclasses of `PortError`: `PortAlreadyUsedError`,
`PortNotAllowedError`, `PortUnavailableError` and `NoAvailablePortError`.
`PortContext` records which proxy holds a port and since when.

### `tunnelsrv.visitor`

`VisitorManager` keeps one `CustomListener` per secret proxy together with
its secret key.

- `listen(name, sk)` creates the listener; a second one for the same name
  raises `VisitorError`.
- `new_conn(name, conn, timestamp, sign_key)` checks that `sign_key` is the
  MD5 hex digest of the secret key followed by the timestamp and, if so,
  queues `conn` on the listener. An unknown name or a bad signature raises
  `VisitorError`.
- `close_listener(name)` forgets the listener and its key.

`CustomListener` is fed by `put_conn(conn)` and drained by
`accept(timeout=None)`, which raises `TimeoutError` when nothing arrives in
time and `VisitorError` once `close()` has been called and the queue is
empty. Its backlog holds 64 connections.

### `tunnelsrv.proxies`

`ProxyManager` is the registry of live proxies by name: `add(name, proxy)`
(`ValueError` if the name is taken), `remove(name)`, `get(name)` (or
`None`), plus `in` and `len()`.

### `tunnelsrv.control`

`Control(run_id, *, pool_count=0, max_pool_count=5, user_conn_timeout=10.0,
request_work_conn=None, proxy_manager=None, conn=None)` is one logged-in
client. `pool_count` is capped at `max_pool_count`, and `request_work_conn`
is called that many times on creation.

- `register_work_conn(conn)` adds a work connection to the pool, which holds
  at most `pool_count + 10`; a full pool raises `RuntimeError`, a closed
  control `ControlClosedError`.
- `get_work_conn()` takes a pooled connection, or asks the client for one
  and waits up to `user_conn_timeout` seconds (`TimeoutError`), and then
  asks for a replacement.
- `close()` closes the control connection, the pooled connections and every
  proxy in `proxies`, removes them from the proxy manager and reports
  `close_proxy` and `close_client` to the metrics.
- `replaced(new_control)` clears the run id and closes the control.
- `wait_closed(timeout=None)` returns whether the control closed in time.

`ControlManager` indexes controls by run id: `add(run_id, control)` closes
and returns any control already registered under that id,
`remove(run_id, control)` forgets the id only while it still maps to that
control, and `get(run_id)` returns the control or `None`.

### `tunnelsrv.metrics`

`ServerMetrics` receives server events (`new_client`, `close_client`,
`new_proxy`, `close_proxy`, `open_connection`, `close_connection`,
`add_traffic_in`, `add_traffic_out`). Each method builds a `MetricEvent` of a
`MetricKind` and passes it to `record`, which a subclass implements.
`NoopServerMetrics` discards everything and is in effect by default.
`register(metrics)` installs a receiver — only the first call takes
effect — and `current()` returns the one in effect.

### `tunnelsrv.dashboard`

`DashboardAPI(stats, proxy_manager, *, version="", bind_port=0, ...)` builds
JSON-ready dictionaries from a `StatsCollector` (any object with
`get_server`, `get_proxies_by_type`, `get_proxies_by_type_and_name` and
`get_proxy_traffic`, returning `ServerStats`, `ProxyStats` and
`ProxyTraffic`):

- `server_info()` — server settings and server-wide statistics.
- `proxies_by_type(proxy_type)` — every proxy of that type with its status
  (`ONLINE` if it is in the proxy manager, else `OFFLINE`) and its
  configuration, taken from the proxy's `conf` attribute (a mapping or a
  dataclass) and narrowed to the fields `conf_fields_for(proxy_type)` lists.
- `proxy_by_type_and_name(proxy_type, name)` — one proxy; `LookupError` if
  it has no statistics, `ValueError` if its configuration cannot be read.
- `proxy_traffic(name)` — its daily traffic in and out; `LookupError` if
  unknown.

## Example

```python
from tunnelsrv.ports import PortManager, PortAlreadyUsedError

ports = PortManager("tcp", "127.0.0.1", allow_ports={6000, 6001})
port = ports.acquire("ssh", 0)
try:
    ports.acquire("web", port)
except PortAlreadyUsedError:
    pass
ports.release(port)
```

## What this package does not do

It opens no listening sockets of its own and speaks no wire protocol: it
does not accept client logins, read or write control messages, forward user
traffic, or let several proxies share one port or virtual host. There is no
command to run and no HTTP server; `DashboardAPI` returns dictionaries for
whatever web layer serves them, and statistics come from a collector you
supply.