"""Reconnecting clients that link the gate server to its zone servers."""

from __future__ import annotations

import contextlib
import socket
import threading
from collections.abc import Iterable

from agonyl.crypto import Crypto562
from agonyl.gateserver.players import Players
from agonyl.logger import Logger
from agonyl.messages import MsgGate2ZsConnect
from agonyl.network import PacketSender, SendError, iter_packets

RECONNECT_DELAY = 10.0


class ZoneServerNotFoundError(LookupError):
    """No zone server client is configured under the requested id."""


class ZoneServerClient:
    """Keeps a connection to one zone server and relays its packets to players."""

    def __init__(
        self,
        server_id: int,
        ip: str,
        port: int,
        logger: Logger,
        players: Players,
        crypto: Crypto562,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self.id = server_id
        self.ip = ip
        self.port = port
        self.addr = f"{ip}:{port}"
        self.name = f"zone server {server_id}"
        self.logger = logger
        self.players = players
        self.crypto = crypto
        self.reconnect_delay = reconnect_delay
        self._stopping = threading.Event()
        self._lock = threading.Lock()
        self._conn: socket.socket | None = None
        self._sender: PacketSender | None = None

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._sender is not None

    def start(self) -> None:
        """Connect and serve until stopped, reconnecting after each failure."""
        self._stopping.clear()
        self.logger.info(
            f"Starting {self.name} client", addr=self.addr, name=self.name, client_id=self.id
        )
        while not self._stopping.is_set():
            try:
                conn = self._connect()
            except OSError:
                self._stopping.wait(self.reconnect_delay)
                continue
            self._handle_connection(conn)
            self._stopping.wait(self.reconnect_delay)

    def stop(self) -> None:
        self._stopping.set()
        with self._lock:
            conn = self._conn
        if conn is not None:
            with contextlib.suppress(OSError):
                conn.shutdown(socket.SHUT_RDWR)
        self.logger.info(
            f"Stopping {self.name} client", addr=self.addr, name=self.name, client_id=self.id
        )

    def send(self, packet: bytes) -> None:
        with self._lock:
            sender = self._sender
        if sender is None:
            raise SendError("client is not connected")
        sender.send(packet)

    def _connect(self) -> socket.socket:
        conn = socket.create_connection((self.ip, self.port))
        with self._lock:
            self._conn = conn
            self._sender = PacketSender(conn.sendall, on_error=self._log_send_error)
        self.logger.info(
            f"Connected to {self.name}", addr=self.addr, name=self.name, client_id=self.id
        )
        return conn

    def _handle_connection(self, conn: socket.socket) -> None:
        try:
            try:
                self.send(MsgGate2ZsConnect(agent_id=self.id).to_bytes())
            except SendError as exc:
                self.logger.error(
                    f"Failed to send connect packet to {self.name}",
                    addr=self.addr,
                    name=self.name,
                    client_id=self.id,
                    error=exc,
                )
                return
            for packet in iter_packets(conn.recv):
                self._process_packet(packet)
        finally:
            with self._lock:
                sender = self._sender
                self._sender = None
                self._conn = None
            if sender is not None:
                sender.close()
            conn.close()

    def _process_packet(self, packet: bytes) -> None:
        if len(packet) < 10:
            return
        pc_id = int.from_bytes(packet[4:8], "little")
        player = self.players.get(pc_id)
        if player is None:
            return
        if packet[8] != 0x01 and packet[9] != 0xE1:
            packet = self.crypto.encrypt(packet)
        with contextlib.suppress(SendError):
            player.send(packet)

    def _log_send_error(self, exc: OSError) -> None:
        self.logger.error(
            f"Failed to send packet to {self.name}",
            addr=self.addr,
            name=self.name,
            error=exc,
            client_id=self.id,
        )


class ZoneServerClients:
    """All zone server clients, keyed by zone server id."""

    def __init__(
        self,
        zone_servers: Iterable[tuple[int, str, int]],
        crypto: Crypto562,
        players: Players,
        logger: Logger,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self.crypto = crypto
        self.players = players
        self.logger = logger
        self.servers: dict[int, ZoneServerClient] = {
            server_id & 0xFF: ZoneServerClient(
                server_id & 0xFF, ip, port, logger, players, crypto, reconnect_delay
            )
            for server_id, ip, port in zone_servers
        }

    def start(self) -> None:
        for server in self.servers.values():
            threading.Thread(target=server.start, name=server.name, daemon=True).start()

    def stop(self) -> None:
        for server in self.servers.values():
            server.stop()

    def get_server(self, server_id: int) -> ZoneServerClient:
        try:
            return self.servers[server_id]
        except KeyError:
            raise ZoneServerNotFoundError(
                f"zone server with id {server_id} not found"
            ) from None

    def send(self, server_id: int, packet: bytes) -> None:
        self.get_server(server_id).send(packet)