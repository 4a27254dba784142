"""Login server: authenticates clients and hands them over to a gate server."""

from __future__ import annotations

import contextlib
import socket
import struct

import bcrypt
from sqlalchemy.exc import SQLAlchemyError

from agonyl.cache import CacheService, add_logged_in_user, is_logged_in, remove_logged_in_user
from agonyl.constants import (
    ACCOUNT_BANNED_MSG,
    ACCOUNT_NOT_ACTIVE_MSG,
    ACCOUNT_STATUS_ACTIVE,
    ACCOUNT_STATUS_BANNED,
    INVALID_CREDENTIALS_MSG,
    LOGIN_ACCOUNT_ALREADY_LOGGED_IN_MSG,
    SERVER_UNDER_MAINTENANCE_MSG,
)
from agonyl.logger import Logger
from agonyl.loginserver.broker import Broker
from agonyl.loginserver.db import Account, LoginDatabase
from agonyl.messages import (
    GateServerInfo,
    MsgC2SLogin,
    MsgHeadNoProtocol,
    MsgLs2ClSay,
    MsgLs2GateLogin,
    MsgS2CGateInfo,
)
from agonyl.network import PacketSender, SendError, TCPServer, iter_packets
from agonyl.uid import UidGenerator

_CTRL_CLIENT = 0x01
_CMD_LOGIN = 0xE0
_CMD_SERVER_SELECT = 0xE1
_SERVER_STATUS_ONLINE = "ONLINE"
_DB_ERRORS = (LookupError, SQLAlchemyError, OSError)


class Server(TCPServer):
    """The client-facing login server; each connection gets a LoginServerSession."""

    def __init__(
        self,
        addr: str,
        logger: Logger,
        cache_service: CacheService,
        db_service: LoginDatabase,
        broker: Broker,
        is_test_mode: bool = False,
    ) -> None:
        super().__init__("login-server", addr, logger, self._new_session, UidGenerator(0))
        self.cache_service = cache_service
        self.db_service = db_service
        self.broker = broker
        self.is_test_mode = is_test_mode

    def _new_session(self, session_id: int, conn: socket.socket) -> LoginServerSession:
        return LoginServerSession(session_id, conn, self)

    def add_logged_in_user(self, username: str, user_id: int) -> None:
        add_logged_in_user(self.cache_service, username, user_id)

    def remove_logged_in_user(self, username: str) -> None:
        remove_logged_in_user(self.cache_service, username)

    def is_logged_in(self, username: str) -> bool:
        return is_logged_in(self.cache_service, username)


def _password_matches(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class LoginServerSession:
    """One game client connected to the login server."""

    def __init__(self, session_id: int, conn: socket.socket, server: Server) -> None:
        with contextlib.suppress(OSError):
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self.id = session_id
        self.server = server
        self.account: Account | None = None
        self._conn = conn
        self._sender = PacketSender(conn.sendall, on_error=self._log_send_error)

    def handle(self) -> None:
        """Process packets until the client disconnects, then forget its login."""
        try:
            for packet in iter_packets(self._conn.recv):
                self._process_packet(packet)
        finally:
            self.server.remove_session(self.id)
            if self.account is not None:
                self.server.remove_logged_in_user(self.account.username)
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
        if len(packet) < 10:
            return
        if self.server.broker.gate_server_count() == 0:
            self._send_client_msg(SERVER_UNDER_MAINTENANCE_MSG)
            return
        if packet[8] != _CTRL_CLIENT:
            return
        cmd = packet[9]
        if cmd == _CMD_LOGIN:
            self._handle_login(packet)
        elif cmd == _CMD_SERVER_SELECT and len(packet) > 10:
            self._handle_server_select(packet[10])

    def _send_client_msg(self, message: str) -> None:
        with contextlib.suppress(OSError):
            self._conn.sendall(MsgLs2ClSay(words=message).to_bytes())

    def _handle_login(self, packet: bytes) -> None:
        if self.account is not None:
            return
        server = self.server
        logger = server.logger
        try:
            msg = MsgC2SLogin.from_bytes(packet)
        except ValueError as exc:
            self._send_client_msg(INVALID_CREDENTIALS_MSG)
            logger.error("Could not read login message", error=exc)
            return

        username = msg.username.strip()
        password = msg.password.strip()
        if not username or not password:
            self._send_client_msg(INVALID_CREDENTIALS_MSG)
            return

        try:
            account = server.db_service.get_account_by_username(username)
        except _DB_ERRORS as exc:
            self._send_client_msg(INVALID_CREDENTIALS_MSG)
            logger.error("Could not get account by username", error=exc, username=username)
            return

        if not server.is_test_mode:
            if not _password_matches(password, account.password_hash):
                self._send_client_msg(INVALID_CREDENTIALS_MSG)
                return
            status = account.status.casefold()
            if status == ACCOUNT_STATUS_BANNED.casefold():
                self._send_client_msg(ACCOUNT_BANNED_MSG)
                return
            if status != ACCOUNT_STATUS_ACTIVE.casefold():
                self._send_client_msg(ACCOUNT_NOT_ACTIVE_MSG)
                return

        if account.is_online or server.is_logged_in(username):
            self._send_client_msg(LOGIN_ACCOUNT_ALREADY_LOGGED_IN_MSG)
            return

        self.account = account
        broker = server.broker
        response = bytearray(
            MsgHeadNoProtocol(ctrl=_CTRL_CLIENT, cmd=_CMD_SERVER_SELECT, pc_id=account.id).to_bytes()
        )
        response += struct.pack("<H", broker.gate_server_count() & 0xFFFF)
        for server_id, server_name in broker.gate_server_list().items():
            response += GateServerInfo(
                server_id=server_id,
                server_name=server_name,
                server_status=_SERVER_STATUS_ONLINE,
            ).to_bytes()
        struct.pack_into("<I", response, 0, len(response))

        server.add_logged_in_user(username, account.id)
        with contextlib.suppress(SendError):
            self.send(bytes(response))
        logger.info(f"Account {username} logged in", username=username, id=account.id)

    def _handle_server_select(self, server_id: int) -> None:
        account = self.account
        if account is None:
            return
        broker = self.server.broker
        logger = self.server.logger
        try:
            info = broker.gate_server_info_by_server_id(server_id)
        except LookupError as exc:
            self._send_client_msg(SERVER_UNDER_MAINTENANCE_MSG)
            logger.error(
                f"Failed to get gate server info by server id {server_id}",
                error=exc,
                server_id=server_id,
                account_id=account.id,
                username=account.username,
            )
            return

        handover = MsgLs2GateLogin(account=account.username, pc_id=account.id).to_bytes()
        try:
            broker.send_msg_to_gate_server(info.id, handover)
        except (LookupError, SendError) as exc:
            self._send_client_msg(SERVER_UNDER_MAINTENANCE_MSG)
            logger.error(
                f"Failed to send message to gate server {server_id}",
                error=exc,
                server_id=info.id,
                account_id=account.id,
                username=account.username,
            )
            return

        gate_info = MsgS2CGateInfo(pc_id=account.id, za_ip=info.ip_address, za_port=info.port)
        with contextlib.suppress(OSError):
            self._conn.sendall(gate_info.to_bytes())

    def _log_send_error(self, exc: OSError) -> None:
        self.server.logger.error("Failed to send packet to client", error=exc, session_id=self.id)