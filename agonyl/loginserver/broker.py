"""Login broker: the endpoint gate servers register with and report account logins to."""

from __future__ import annotations

import contextlib
import socket
from dataclasses import dataclass

from agonyl.cache import CacheService, add_logged_in_user, is_logged_in, remove_logged_in_user
from agonyl.logger import Logger
from agonyl.messages import MsgGate2LsAccLogout, MsgGate2LsConnect, MsgGate2LsPreparedAccLogin
from agonyl.network import PacketSender, TCPServer, iter_packets
from agonyl.uid import UidGenerator

_CTRL_GATE = 0x02
_CMD_GATE_CONNECT = 0xE0
_CMD_ACCOUNT_LOGOUT = 0xE2
_CMD_ACCOUNT_LOGIN = 0xE3
_DEFAULT_SERVER_NAME = "Agonyl"


class GateServerNotFoundError(LookupError):
    """No connected gate server matches the request."""


@dataclass(frozen=True)
class GateInfo:
    """Where a registered gate server can be reached, and its broker session id."""

    id: int
    ip_address: str
    port: int


class Broker(TCPServer):
    """Accepts gate server connections and keeps track of logged-in accounts."""

    def __init__(self, addr: str, logger: Logger, cache_service: CacheService) -> None:
        super().__init__("login-broker", addr, logger, self._new_session, UidGenerator(0))
        self.cache_service = cache_service

    def _new_session(self, session_id: int, conn: socket.socket) -> BrokerSession:
        return BrokerSession(session_id, conn, self)

    def gate_server_list(self) -> dict[int, str]:
        """Server id to name, one entry per distinct gate port."""
        seen_ports: set[int] = set()
        result: dict[int, str] = {}
        for session in self.sessions.values():
            if session.port in seen_ports:
                continue
            seen_ports.add(session.port)
            result[session.server_id] = session.server_name
        return result

    def gate_server_count(self) -> int:
        return len(self.sessions)

    def add_logged_in_user(self, username: str, user_id: int) -> None:
        add_logged_in_user(self.cache_service, username, user_id)

    def remove_logged_in_user(self, username: str) -> None:
        remove_logged_in_user(self.cache_service, username)

    def is_logged_in(self, username: str) -> bool:
        return is_logged_in(self.cache_service, username)

    def gate_server_info_by_server_id(self, server_id: int) -> GateInfo:
        for session in self.sessions.values():
            if session.server_id == server_id:
                return GateInfo(id=session.id, ip_address=session.ip_address, port=session.port)
        raise GateServerNotFoundError("gate server not found")

    def send_msg_to_gate_server(self, session_id: int, msg: bytes) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            raise GateServerNotFoundError("gate server not found")
        session.send(msg)


class BrokerSession:
    """One gate server connected to the broker."""

    def __init__(self, session_id: int, conn: socket.socket, server: Broker) -> None:
        with contextlib.suppress(OSError):
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self.id = session_id
        self.server = server
        self.server_id = 0
        self.server_name = _DEFAULT_SERVER_NAME
        self.port = 0
        self.ip_address = ""
        self.is_initialized = False
        self._conn = conn
        self._sender = PacketSender(conn.sendall, on_error=self._log_send_error)

    def handle(self) -> None:
        """Process packets until the gate disconnects, then unregister it."""
        try:
            for packet in iter_packets(self._conn.recv):
                self._process_packet(packet)
        finally:
            self.server.logger.info(
                f"Gate server {self.id} closed",
                server_name=self.server_name,
                ip_address=self.ip_address,
                port=self.port,
                server_id=self.server_id,
            )
            self.server.remove_session(self.id)
            self._sender.close()
            with contextlib.suppress(OSError):
                self._conn.close()

    def send(self, data: bytes) -> None:
        """Queue ``data``; raises SendError if the session is closing or the queue is full."""
        self._sender.send(data)

    def close(self) -> None:
        with contextlib.suppress(OSError):
            self._conn.shutdown(socket.SHUT_RDWR)
        self._conn.close()

    def _process_packet(self, packet: bytes) -> None:
        if len(packet) < 10 or packet[8] != _CTRL_GATE:
            return
        cmd = packet[9]
        if cmd == _CMD_GATE_CONNECT:
            self._handle_gate_connect(packet)
        elif cmd == _CMD_ACCOUNT_LOGOUT:
            self._handle_account_logout(packet)
        elif cmd == _CMD_ACCOUNT_LOGIN:
            self._handle_account_login(packet)

    def _handle_gate_connect(self, packet: bytes) -> None:
        if self.is_initialized:
            return
        try:
            msg = MsgGate2LsConnect.from_bytes(packet)
        except ValueError as exc:
            self.server.logger.error("Failed to read gate connect message", error=exc)
            return
        self.server_id = msg.server_id
        self.ip_address = msg.ip_address
        self.port = msg.port
        self.server_name = msg.name
        self.is_initialized = True
        self.server.logger.info(
            f"Gate Server {self.server_id} connected",
            ip_address=self.ip_address,
            port=self.port,
            server_name=self.server_name,
            server_id=self.server_id,
        )

    def _handle_account_logout(self, packet: bytes) -> None:
        try:
            msg = MsgGate2LsAccLogout.from_bytes(packet)
        except ValueError as exc:
            self.server.logger.error("Failed to read gate account logout message", error=exc)
            return
        self.server.logger.info(f"{msg.account} logged out")
        self.server.remove_logged_in_user(msg.account)

    def _handle_account_login(self, packet: bytes) -> None:
        try:
            msg = MsgGate2LsPreparedAccLogin.from_bytes(packet)
        except ValueError as exc:
            self.server.logger.error("Failed to read gate account login message", error=exc)
            return
        self.server.logger.info(f"{msg.account} logged in")
        self.server.add_logged_in_user(msg.account, msg.pc_id)

    def _log_send_error(self, exc: OSError) -> None:
        self.server.logger.error(
            "Failed to send packet to gate server", error=exc, session_id=self.id
        )