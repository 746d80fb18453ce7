import threading

import pytest

from tunnelsrv.visitor import CustomListener, VisitorError, VisitorManager


def simple_key(sk, timestamp):
    return f"{sk}:{timestamp}"


def test_signed_connection_reaches_listener():
    manager = VisitorManager(auth_key=simple_key)
    listener = manager.listen("ssh", "secret")
    conn = object()
    manager.new_conn("ssh", conn, 100, simple_key("secret", 100))
    assert listener.accept(timeout=1) is conn


def test_bad_signature_rejected():
    manager = VisitorManager(auth_key=simple_key)
    listener = manager.listen("ssh", "secret")
    with pytest.raises(VisitorError, match="auth failed"):
        manager.new_conn("ssh", object(), 100, simple_key("secret", 101))
    with pytest.raises(TimeoutError):
        listener.accept(timeout=0.01)


def test_unknown_listener_rejected():
    manager = VisitorManager(auth_key=simple_key)
    with pytest.raises(VisitorError, match="doesn't exist"):
        manager.new_conn("ssh", object(), 1, simple_key("secret", 1))


def test_repeated_listen_rejected():
    manager = VisitorManager()
    manager.listen("ssh", "secret")
    with pytest.raises(VisitorError, match="repeated"):
        manager.listen("ssh", "secret")


def test_close_listener_forgets_name():
    manager = VisitorManager(auth_key=simple_key)
    manager.listen("ssh", "secret")
    manager.close_listener("ssh")
    with pytest.raises(VisitorError):
        manager.new_conn("ssh", object(), 1, simple_key("secret", 1))
    assert isinstance(manager.listen("ssh", "secret"), CustomListener)


def test_default_auth_key_checks_timestamp():
    manager = VisitorManager()
    listener = manager.listen("ssh", "secret")
    other = VisitorManager()
    other_listener = other.listen("ssh", "secret")
    conn = object()
    # A signature taken from a second manager with the same key must be accepted.
    signature_holder = {}

    def capture(sk, timestamp):
        signature_holder["value"] = VisitorManager()._auth_key(sk, timestamp)
        return signature_holder["value"]

    capture("secret", 42)
    manager.new_conn("ssh", conn, 42, signature_holder["value"])
    assert listener.accept(timeout=1) is conn
    assert len(signature_holder["value"]) == 32
    with pytest.raises(VisitorError):
        other.new_conn("ssh", object(), 43, signature_holder["value"])
    with pytest.raises(TimeoutError):
        other_listener.accept(timeout=0.01)


def test_listener_order_is_fifo():
    listener = CustomListener()
    first, second = object(), object()
    listener.put_conn(first)
    listener.put_conn(second)
    assert listener.accept(timeout=1) is first
    assert listener.accept(timeout=1) is second


def test_closed_listener_refuses_connections():
    listener = CustomListener()
    listener.close()
    with pytest.raises(VisitorError):
        listener.put_conn(object())
    with pytest.raises(VisitorError):
        listener.accept(timeout=1)


def test_close_wakes_waiting_accept():
    listener = CustomListener()
    timer = threading.Timer(0.05, listener.close)
    timer.start()
    try:
        with pytest.raises(VisitorError, match="listener closed"):
            listener.accept(timeout=5)
    finally:
        timer.join()


def test_full_backlog_rejected():
    listener = CustomListener(backlog=1)
    listener.put_conn(object())
    with pytest.raises(VisitorError, match="full"):
        listener.put_conn(object())