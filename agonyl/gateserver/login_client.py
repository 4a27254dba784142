"""Reconnecting client that links the gate server to the login server."""

from __future__ import annotations

import contextlib
import socket
import threading

from agonyl.logger import Logger
from agonyl.messages import MsgGate2LsConnect, MsgLs2GateLogin
from agonyl.network import PacketSender, SendError, iter_packets
from agonyl.safe import SafeMap

RECONNECT_DELAY = 10.0
_CTRL_LOGIN_SERVER = 0x01
_CMD_ACCOUNT_LOGIN = 0xE1


class LoginServerClient:
    """Registers this gate with the login server and tracks the accounts it admits."""

    def __init__(
        self,
        server_id: int,
        server_name: str,
        server_ip_address: str,
        server_port: int,
        login_server_ip: str,
        login_server_port: int,
        logger: Logger,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self.id = server_id & 0xFF
        self.name = "login server"
        self.server_name = server_name
        self.server_ip_address = server_ip_address
        self.server_port = server_port
        self.ip_address = login_server_ip
        self.port = login_server_port
        self.addr = f"{login_server_ip}:{login_server_port}"
        self.logger = logger
        self.reconnect_delay = reconnect_delay
        self._accounts: SafeMap[int, str] = SafeMap()
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
        """Queue ``packet``; raises SendError when not connected or the queue is full."""
        with self._lock:
            sender = self._sender
        if sender is None:
            raise SendError("client is not connected")
        sender.send(packet)

    def is_logged_in(self, pc_id: int) -> bool:
        return pc_id in self._accounts

    def get_logged_in_account(self, pc_id: int) -> str:
        """The account admitted under ``pc_id``, or an empty string."""
        account = self._accounts.get(pc_id)
        return "" if account is None else account

    def remove_logged_in_account(self, pc_id: int) -> None:
        self._accounts.delete(pc_id)

    def pop_logged_in_account(self, pc_id: int) -> str | None:
        """Remove and return the account admitted under ``pc_id``, or None."""
        return self._accounts.pop(pc_id)

    def _connect(self) -> socket.socket:
        conn = socket.create_connection((self.ip_address, self.port))
        with self._lock:
            self._conn = conn
            self._sender = PacketSender(conn.sendall, on_error=self._log_send_error)
        self.logger.info(
            f"Connected to {self.name}", addr=self.addr, name=self.name, client_id=self.id
        )
        return conn

    def _handle_connection(self, conn: socket.socket) -> None:
        try:
            connect = MsgGate2LsConnect(
                server_id=self.id,
                agent_id=self.id,
                ip_address=self.server_ip_address,
                port=self.server_port,
                name=self.server_name,
            )
            try:
                self.send(connect.to_bytes())
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
        if packet[8] == _CTRL_LOGIN_SERVER and packet[9] == _CMD_ACCOUNT_LOGIN:
            self._handle_login(packet)

    def _handle_login(self, packet: bytes) -> None:
        try:
            msg = MsgLs2GateLogin.from_bytes(packet)
        except ValueError:
            return
        self._accounts.set(msg.pc_id, msg.account)

    def _log_send_error(self, exc: OSError) -> None:
        self.logger.error(
            f"Failed to send packet to {self.name}",
            addr=self.addr,
            name=self.name,
            error=exc,
            client_id=self.id,
        )