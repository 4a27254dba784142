import io
import socket
import threading

import pytest

from agonyl.crypto import Crypto562
from agonyl.gateserver.players import Player, Players
from agonyl.gateserver.zone_clients import (
    ZoneServerClient,
    ZoneServerClients,
    ZoneServerNotFoundError,
)
from agonyl.logger import Logger
from agonyl.messages import MsgGate2ZsConnect
from agonyl.network import SendError


def _recv_exact(sock, size):
    sock.settimeout(5)
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        assert chunk, "connection closed early"
        data += chunk
    return data


@pytest.fixture
def logger():
    return Logger("test", stream=io.StringIO())


def test_send_when_not_connected_raises(logger):
    client = ZoneServerClient(1, "127.0.0.1", 1, logger, Players(), Crypto562(0x1234))
    assert not client.is_connected
    with pytest.raises(SendError):
        client.send(b"\x00" * 12)


def test_clients_lookup(logger):
    clients = ZoneServerClients(
        [(0, "127.0.0.1", 1), (255, "127.0.0.1", 2)], Crypto562(1), Players(), logger
    )
    account_server = clients.get_server(255)
    assert (account_server.id, account_server.port) == (255, 2)
    assert account_server.name == "zone server 255"
    with pytest.raises(ZoneServerNotFoundError):
        clients.get_server(3)
    with pytest.raises(ZoneServerNotFoundError):
        clients.send(3, b"\x00" * 12)
    with pytest.raises(SendError):
        clients.send(0, b"\x00" * 12)


def test_connects_and_relays_packets(logger):
    listener = socket.create_server(("127.0.0.1", 0))
    listener.settimeout(5)
    port = listener.getsockname()[1]
    crypto = Crypto562(0x1234)
    players = Players()
    player_sock, peer_sock = socket.socketpair()
    player = Player(7, "alice", player_sock, logger)
    players.add(player)
    client = ZoneServerClient(3, "127.0.0.1", port, logger, players, crypto, reconnect_delay=0.05)
    thread = threading.Thread(target=client.start, daemon=True)
    thread.start()
    conn, _ = listener.accept()
    try:
        expected = MsgGate2ZsConnect(agent_id=3).to_bytes()
        hello = MsgGate2ZsConnect.from_bytes(_recv_exact(conn, len(expected)))
        assert (hello.ctrl, hello.cmd, hello.agent_id) == (0x01, 0xE0, 3)

        plain = (16).to_bytes(4, "little") + (7).to_bytes(4, "little") + b"\x01\x20" + bytes(6)
        secret_body = (16).to_bytes(4, "little") + (7).to_bytes(4, "little") + b"\x03\x10"
        ciphered = secret_body + b"\x00\x00\x11\x22\x33\x44"
        stranger = (12).to_bytes(4, "little") + (99).to_bytes(4, "little") + b"\x03\x10\x00\x00"
        conn.sendall(plain + stranger + ciphered)

        assert _recv_exact(peer_sock, len(plain)) == plain
        assert _recv_exact(peer_sock, len(ciphered)) == crypto.encrypt(ciphered)
        assert client.is_connected
    finally:
        client.stop()
        conn.close()
        thread.join(timeout=5)
        player.close()
        player_sock.close()
        peer_sock.close()
        listener.close()
    assert not thread.is_alive()
    assert not client.is_connected