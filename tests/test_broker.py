import contextlib
import io
import socket
import threading
import time

import pytest

from agonyl.cache import logged_in_user_key
from agonyl.logger import Logger
from agonyl.loginserver.broker import Broker, GateInfo, GateServerNotFoundError
from agonyl.messages import MsgGate2LsAccLogout, MsgGate2LsConnect, MsgGate2LsPreparedAccLogin
from agonyl.network import SendError


class _FakeCache:
    def __init__(self):
        self.data = {}

    def ping(self):
        return True

    def set(self, name, value, ex=None):
        self.data[name] = value

    def get(self, name):
        return self.data.get(name)

    def delete(self, *names):
        for name in names:
            self.data.pop(name, None)

    def exists(self, *names):
        return sum(name in self.data for name in names)


def _wait_until(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def _recv_exact(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise ConnectionError("peer closed")
        data += chunk
    return data


@contextlib.contextmanager
def _running_session(broker, session_id=1):
    server_end, client_end = socket.socketpair()
    client_end.settimeout(5)
    session = broker.new_session(session_id, server_end)
    broker.add_session(session_id, session)
    thread = threading.Thread(target=session.handle, daemon=True)
    thread.start()
    try:
        yield session, client_end
    finally:
        client_end.close()
        thread.join(5)


@pytest.fixture
def cache():
    return _FakeCache()


@pytest.fixture
def broker(cache):
    return Broker(":0", Logger("login-broker", stream=io.StringIO()), cache)


def _connect_packet(server_id, port, name):
    return MsgGate2LsConnect(
        server_id=server_id, agent_id=server_id, ip_address="127.0.0.1", port=port, name=name
    ).to_bytes()


def test_gate_connect_registers_gate(broker):
    with _running_session(broker, 1) as (_, client):
        client.sendall(_connect_packet(3, 9860, "Alpha"))
        assert _wait_until(lambda: broker.gate_server_list() == {3: "Alpha"})
        assert broker.gate_server_info_by_server_id(3) == GateInfo(
            id=1, ip_address="127.0.0.1", port=9860
        )
        assert broker.gate_server_count() == 1
    assert broker.gate_server_count() == 0


def test_second_gate_connect_is_ignored(broker):
    with _running_session(broker, 1) as (session, client):
        client.sendall(_connect_packet(3, 9860, "Alpha"))
        client.sendall(_connect_packet(4, 9861, "Beta"))
        client.sendall(MsgGate2LsPreparedAccLogin(account="probe", pc_id=1).to_bytes())
        assert _wait_until(lambda: broker.is_logged_in("probe"))
        assert session.server_id == 3
        assert session.server_name == "Alpha"


def test_uninitialized_session_uses_default_name(broker):
    with _running_session(broker, 1):
        assert broker.gate_server_list() == {0: "Agonyl"}


def test_gate_server_list_deduplicates_ports(broker):
    with _running_session(broker, 1) as (_, first), _running_session(broker, 2) as (_, second):
        first.sendall(_connect_packet(3, 9860, "Alpha"))
        second.sendall(_connect_packet(3, 9860, "Alpha"))
        assert _wait_until(
            lambda: all(s.is_initialized for s in broker.sessions.values())
        )
        assert broker.gate_server_count() == 2
        assert broker.gate_server_list() == {3: "Alpha"}


def test_account_login_and_logout_update_cache(broker, cache):
    with _running_session(broker, 1) as (_, client):
        client.sendall(MsgGate2LsPreparedAccLogin(account="hero", pc_id=7).to_bytes())
        assert _wait_until(lambda: broker.is_logged_in("hero"))
        assert cache.data[logged_in_user_key("hero")] == 7
        client.sendall(MsgGate2LsAccLogout(reason=0, account="hero").to_bytes())
        assert _wait_until(lambda: not broker.is_logged_in("hero"))
        assert logged_in_user_key("hero") not in cache.data


def test_logged_in_user_helpers(broker, cache):
    broker.add_logged_in_user("hero", 5)
    assert broker.is_logged_in("hero") is True
    assert cache.data[logged_in_user_key("hero")] == 5
    broker.remove_logged_in_user("hero")
    assert broker.is_logged_in("hero") is False


def test_unknown_gate_server_raises(broker):
    with pytest.raises(GateServerNotFoundError):
        broker.gate_server_info_by_server_id(9)
    with pytest.raises(GateServerNotFoundError):
        broker.send_msg_to_gate_server(9, b"data")


def test_send_msg_to_gate_server_delivers_bytes(broker):
    payload = MsgGate2LsPreparedAccLogin(account="hero").to_bytes()
    with _running_session(broker, 1) as (_, client):
        broker.send_msg_to_gate_server(1, payload)
        assert _recv_exact(client, len(payload)) == payload


def test_send_after_handle_ends_raises(broker):
    with _running_session(broker, 1) as (session, _):
        pass
    with pytest.raises(SendError):
        session.send(b"data")