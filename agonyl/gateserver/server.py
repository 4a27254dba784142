"""Gate server: admits players handed over by the login server and routes their packets."""

from __future__ import annotations

import contextlib
import socket
import struct

from sqlalchemy.exc import SQLAlchemyError

from agonyl.constants import (
    ACCOUNT_SERVER_SERVER_ID,
    GATE_ACCOUNT_ALREADY_LOGGED_IN_MSG,
    GATE_LOGIN_FAILED_MSG,
    LOGIN_FAILED_ERROR_CODE,
)
from agonyl.crypto import Crypto562
from agonyl.gateserver.db import GateDatabase
from agonyl.gateserver.login_client import LoginServerClient
from agonyl.gateserver.players import Player, Players
from agonyl.gateserver.zone_clients import ZoneServerClients, ZoneServerNotFoundError
from agonyl.logger import Logger
from agonyl.messages import (
    MsgC2SGateLogin,
    MsgGate2AsNewClient,
    MsgGate2LsAccLogout,
    MsgGate2LsPreparedAccLogin,
    MsgS2CError,
    MsgZa2ZsAccLogout,
)
from agonyl.network import PacketSender, SendError, TCPServer, iter_packets
from agonyl.uid import UidGenerator

# Protocols handled by the account server whatever zone the player is in.
_ACCOUNT_PROTOCOLS = frozenset({0x1106, 0x2322, 0x2323, 0xA001, 0xA002})
_CLAN_PROTOCOLS = frozenset({0x2322, 0x2323})
_DB_ERRORS = (LookupError, SQLAlchemyError, OSError)


def _quietly():
    return contextlib.suppress(SendError, ZoneServerNotFoundError)


def _remote_ip(conn: socket.socket) -> str:
    try:
        peer = conn.getpeername()
    except OSError:
        return ""
    return str(peer[0]) if isinstance(peer, tuple) else ""


class Server(TCPServer):
    """The gate's listening server; each connection gets a ServerSession."""

    def __init__(
        self,
        addr: str,
        logger: Logger,
        players: Players,
        zone_server_clients: ZoneServerClients,
        login_server_client: LoginServerClient,
        crypto: Crypto562,
        db: GateDatabase,
    ) -> None:
        super().__init__("gate-server", addr, logger, self._new_session, UidGenerator(0))
        self.players = players
        self.zone_server_clients = zone_server_clients
        self.login_server_client = login_server_client
        self.crypto = crypto
        self.db = db

    def _new_session(self, session_id: int, conn: socket.socket) -> ServerSession:
        return ServerSession(session_id, conn, self)


class ServerSession:
    """One game client connected to the gate."""

    def __init__(self, session_id: int, conn: socket.socket, server: Server) -> None:
        with contextlib.suppress(OSError):
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self.id = session_id
        self.server = server
        self.player: Player | None = None
        self._conn = conn
        self._sender = PacketSender(conn.sendall, on_error=self._log_send_error)

    def handle(self) -> None:
        """Process packets until the client disconnects, then log the player out."""
        try:
            for packet in iter_packets(self._conn.recv):
                self._process_packet(packet)
        finally:
            self._sender.close()
            self._send_server_logout_msg()
            player = self.player
            if player is not None:
                self.server.players.remove(player.id)
                player.close()
            self.server.remove_session(self.id)
            if player is not None:
                with contextlib.suppress(*_DB_ERRORS):
                    self.server.db.set_account_offline(player.id)
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
        ctrl, cmd = packet[8], packet[9]
        protocol = struct.unpack_from("<H", packet, 10)[0] if len(packet) > 11 else 0
        data = bytearray(packet)
        if self.player is not None:
            struct.pack_into("<I", data, 4, self.player.id)
        zones = self.server.zone_server_clients

        if ctrl == 0x01:
            if cmd == 0xE2:
                self._handle_login(bytes(data))
            return

        if self.player is None:
            return
        if ctrl == 0x03:
            target = (
                ACCOUNT_SERVER_SERVER_ID
                if protocol in _ACCOUNT_PROTOCOLS
                else self.player.current_zone()
            )
            with _quietly():
                zones.send(target, bytes(data))
        elif protocol in _CLAN_PROTOCOLS:
            with _quietly():
                zones.send(ACCOUNT_SERVER_SERVER_ID, bytes(data))

    def _handle_login(self, packet: bytes) -> None:
        server = self.server
        logger = server.logger
        try:
            msg = MsgC2SGateLogin.from_bytes(packet)
        except ValueError as exc:
            logger.error("Failed to read login message", error=exc, session_id=self.id)
            self._reject(GATE_LOGIN_FAILED_MSG)
            return

        pc_id = msg.account_id
        username = msg.account
        if not server.login_server_client.is_logged_in(pc_id):
            self._reject(GATE_LOGIN_FAILED_MSG)
            return
        if server.players.has_player(pc_id):
            self._reject(GATE_ACCOUNT_ALREADY_LOGGED_IN_MSG)
            return

        try:
            account = server.db.get_account(pc_id)
        except _DB_ERRORS as exc:
            logger.error("Failed to get account", error=exc, session_id=self.id)
            self._reject(GATE_LOGIN_FAILED_MSG)
            return

        if account.username != username:
            logger.error(
                "Account username mismatch",
                expected=account.username,
                actual=username,
                session_id=self.id,
            )
            self._reject(GATE_LOGIN_FAILED_MSG)
            return
        if account.is_online:
            self._reject(GATE_ACCOUNT_ALREADY_LOGGED_IN_MSG)
            return

        try:
            server.db.set_account_online(pc_id, account)
        except _DB_ERRORS as exc:
            logger.error("Failed to set account online", error=exc, session_id=self.id)
            self._reject(GATE_LOGIN_FAILED_MSG)
            return

        self.player = Player(pc_id, username, self._conn, logger)
        server.players.add(self.player)
        with _quietly():
            server.login_server_client.send(
                MsgGate2LsPreparedAccLogin(account=username).to_bytes()
            )
        logger.info(f"Account {username} logged in", id=pc_id, username=username)
        new_client = MsgGate2AsNewClient(
            pc_id=pc_id,
            account=username,
            password=msg.password,
            client_ip=_remote_ip(self._conn),
        )
        with _quietly():
            server.zone_server_clients.send(ACCOUNT_SERVER_SERVER_ID, new_client.to_bytes())

    def _reject(self, message: str) -> None:
        with contextlib.suppress(OSError):
            self._send_error_msg(LOGIN_FAILED_ERROR_CODE, message)

    def _send_error_msg(self, code: int, message: str) -> None:
        data = MsgS2CError(pc_id=0, code=code, message=message).to_bytes()
        self._conn.sendall(self.server.crypto.encrypt(data))

    def _send_server_logout_msg(self) -> None:
        player = self.player
        if player is None:
            return
        self.server.logger.info(
            f"Account {player.username} session ended", id=player.id, username=player.username
        )
        with _quietly():
            self.server.zone_server_clients.send(
                player.current_zone(), MsgZa2ZsAccLogout(pc_id=player.id, reason=0).to_bytes()
            )
        with _quietly():
            self.server.login_server_client.send(
                MsgGate2LsAccLogout(reason=0, account=player.username).to_bytes()
            )

    def _log_send_error(self, exc: OSError) -> None:
        self.server.logger.error("Failed to send packet to client", error=exc, session_id=self.id)