import socket

import pytest

from tunnelsrv.ports import (
    MAX_PORT,
    MAX_PORT_RESERVED_DURATION,
    MIN_PORT,
    NoAvailablePortError,
    PortAlreadyUsedError,
    PortError,
    PortManager,
    PortNotAllowedError,
    PortUnavailableError,
)

HOST = "127.0.0.1"


def free_port(kind=socket.SOCK_STREAM):
    with socket.socket(socket.AF_INET, kind) as sock:
        sock.bind((HOST, 0))
        return sock.getsockname()[1]


def two_free_ports():
    first = free_port()
    second = free_port()
    while second == first:
        second = free_port()
    return first, second


def make(allow, net_type="tcp"):
    return PortManager(net_type, HOST, allow, clean_interval=None)


def test_acquire_specified_port():
    port = free_port()
    pm = make({port})
    assert pm.acquire("web", port) == port
    assert port in pm.used_ports
    assert port not in pm.free_ports
    assert pm.reserved_ports["web"].port == port
    assert pm.used_ports[port].proxy_name == "web"


def test_acquire_used_port_fails():
    port = free_port()
    pm = make({port})
    pm.acquire("web", port)
    with pytest.raises(PortAlreadyUsedError):
        pm.acquire("other", port)


def test_acquire_port_outside_allowed_set_fails():
    allowed, other = two_free_ports()
    pm = make({allowed})
    with pytest.raises(PortNotAllowedError) as info:
        pm.acquire("web", other)
    assert str(info.value) == "port not allowed"


def test_acquire_port_bound_elsewhere_fails():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind((HOST, 0))
        holder.listen()
        port = holder.getsockname()[1]
        pm = make({port})
        with pytest.raises(PortUnavailableError):
            pm.acquire("web", port)
        assert port in pm.free_ports


def test_udp_port_bound_elsewhere_fails():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as holder:
        holder.bind((HOST, 0))
        port = holder.getsockname()[1]
        pm = make({port}, "udp")
        with pytest.raises(PortUnavailableError):
            pm.acquire("dns", port)


def test_udp_acquire_and_release():
    port = free_port(socket.SOCK_DGRAM)
    pm = make({port}, "udp")
    assert pm.acquire("dns", port) == port
    pm.release(port)
    assert port in pm.free_ports
    assert port not in pm.used_ports


def test_random_port_from_allowed_set():
    first, second = two_free_ports()
    pm = make({first, second})
    got = pm.acquire("web", 0)
    assert got in {first, second}
    assert pm.free_ports == {first, second} - {got}


def test_random_port_without_allowed_set_is_in_range():
    pm = PortManager("tcp", HOST, None, clean_interval=None)
    got = pm.acquire("web", 0)
    assert MIN_PORT <= got <= MAX_PORT
    assert got not in pm.free_ports
    pm.release(got)


def test_no_available_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind((HOST, 0))
        holder.listen()
        port = holder.getsockname()[1]
        pm = make({port})
        with pytest.raises(NoAvailablePortError):
            pm.acquire("web", 0)


def test_released_port_is_reserved_for_same_name():
    first, second = two_free_ports()
    pm = make({first, second})
    got = pm.acquire("web", 0)
    pm.release(got)
    assert pm.reserved_ports["web"].closed is True
    assert pm.acquire("web", 0) == got
    assert pm.reserved_ports["web"].closed is False


def test_release_unknown_port_changes_nothing():
    port = free_port()
    pm = make({port})
    pm.release(port)
    assert pm.free_ports == {port}
    assert pm.used_ports == {}


def test_clean_reserved_drops_old_closed_reservations():
    first, second = two_free_ports()
    pm = make({first, second})
    old = pm.acquire("old", first)
    pm.acquire("live", second)
    pm.release(old)
    pm.reserved_ports["old"].update_time -= MAX_PORT_RESERVED_DURATION + 1
    pm.reserved_ports["live"].update_time -= MAX_PORT_RESERVED_DURATION + 1
    pm.clean_reserved()
    assert "old" not in pm.reserved_ports
    assert "live" in pm.reserved_ports


def test_clean_reserved_keeps_recent_closed_reservations():
    port = free_port()
    pm = make({port})
    pm.acquire("web", port)
    pm.release(port)
    pm.clean_reserved()
    assert pm.reserved_ports["web"].port == port


def test_errors_share_base_class():
    for error in (
        PortAlreadyUsedError(),
        PortNotAllowedError(),
        PortUnavailableError(),
        NoAvailablePortError(),
    ):
        assert isinstance(error, PortError)
    assert str(NoAvailablePortError()) == "no available port"
    assert str(PortAlreadyUsedError()) == "port already used"


def test_unknown_network_type_rejected():
    with pytest.raises(ValueError):
        PortManager("sctp", HOST, None, clean_interval=None)