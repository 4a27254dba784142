"""Logged-in players of the gate server and their outgoing packet queues."""

from __future__ import annotations

import socket

from agonyl.logger import Logger
from agonyl.network import PacketSender
from agonyl.safe import SafeMap

NO_ZONE = 255
_ZONE_CHANGE_CTRL = 0x01
_ZONE_CHANGE_CMD = 0xE1
_ZONE_OFFSET = 0x0A


class Player:
    """A connected player; zone-change packets update the zone instead of being sent."""

    def __init__(self, player_id: int, username: str, conn: socket.socket, logger: Logger) -> None:
        self.id = player_id
        self.username = username
        self.logger = logger
        self._conn = conn
        self._current_zone = NO_ZONE
        self._sender = PacketSender(self._deliver, on_error=self._log_send_error)

    def send(self, data: bytes) -> None:
        """Queue ``data``; raises SendError if the player is closing or the queue is full."""
        self._sender.send(data)

    def close(self) -> None:
        self._sender.close()

    def current_zone(self) -> int:
        return self._current_zone

    def _deliver(self, data: bytes) -> None:
        if len(data) > 9 and data[8] == _ZONE_CHANGE_CTRL and data[9] == _ZONE_CHANGE_CMD:
            if len(data) > _ZONE_OFFSET:
                self._current_zone = data[_ZONE_OFFSET]
            return
        self._conn.sendall(data)

    def _log_send_error(self, exc: OSError) -> None:
        self.logger.error(
            "Failed to send packet to client",
            error=exc,
            player_id=self.id,
            current_zone=self._current_zone,
            username=self.username,
        )


class Players:
    """Registry of players keyed by id."""

    def __init__(self) -> None:
        self._players: SafeMap[int, Player] = SafeMap()

    def add(self, player: Player) -> None:
        self._players.set(player.id, player)

    def remove(self, player_id: int) -> None:
        self._players.delete(player_id)

    def get(self, player_id: int) -> Player | None:
        return self._players.get(player_id)

    def has_player(self, player_id: int) -> bool:
        return player_id in self._players

    def has_player_by_username(self, username: str) -> bool:
        return any(player.username == username for player in self._players.values())

    def has_player_by_username_or_id(self, username: str, player_id: int) -> bool:
        return any(
            player.username == username or player.id == player_id
            for player in self._players.values()
        )