"""Fixed-layout little-endian wire messages exchanged between clients and servers."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, TypeVar

from agonyl.utils import read_string_from_bytes

M = TypeVar("M", bound="Message")

_HEAD_NO_PROTOCOL = "IIBB"
_HEAD = _HEAD_NO_PROTOCOL + "H"


class Message:
    """Base for packed records; fields are laid out in declaration order."""

    _FORMAT: ClassVar[str] = ""
    _TEXT: ClassVar[frozenset[str]] = frozenset()
    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<")

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls._STRUCT = struct.Struct("<" + cls._FORMAT)

    def size(self) -> int:
        """The number of bytes the message occupies on the wire."""
        return self._STRUCT.size

    def to_bytes(self) -> bytes:
        values = []
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name in self._TEXT:
                value = value.encode("utf-8")
            values.append(value)
        return self._STRUCT.pack(*values)

    @classmethod
    def from_bytes(cls: type[M], packet: bytes | bytearray | memoryview) -> M:
        """Decode the message from the start of ``packet``; extra bytes are ignored."""
        layout = cls._STRUCT
        if len(packet) < layout.size:
            raise ValueError(
                f"{cls.__name__} needs {layout.size} bytes, got {len(packet)}"
            )
        kwargs: dict[str, Any] = {}
        for item, value in zip(fields(cls), layout.unpack_from(packet)):
            if item.name in cls._TEXT:
                value = read_string_from_bytes(value)
            kwargs[item.name] = value
        return cls(**kwargs)


@dataclass(kw_only=True)
class MsgHeadNoProtocol(Message):
    """Packet header: total length, character id, control and command bytes."""

    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL

    length: int | None = None
    pc_id: int = 0
    ctrl: int = 0
    cmd: int = 0

    def __post_init__(self) -> None:
        if self.length is None:
            self.length = self.size()


@dataclass(kw_only=True)
class _MsgHead(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD

    protocol: int = 0


@dataclass(kw_only=True)
class MsgS2CError(_MsgHead):
    _FORMAT: ClassVar[str] = _HEAD + "H64s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"message"})

    ctrl: int = 0x03
    cmd: int = 0xFF
    protocol: int = 0x0FFF
    code: int = 0
    message: str = ""


@dataclass(kw_only=True)
class MsgC2SLogin(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "21s21s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"username", "password"})

    ctrl: int = 0x01
    cmd: int = 0x01
    username: str = ""
    password: str = ""


@dataclass(kw_only=True)
class MsgC2SGateLogin(MsgHeadNoProtocol):
    """Gate login; ``account_id`` defaults to the header's ``pc_id``."""

    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "I21s21s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"account", "password"})

    ctrl: int = 0x01
    cmd: int = 0xE2
    account_id: int | None = None
    account: str = ""
    password: str = ""

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.account_id is None:
            self.account_id = self.pc_id


@dataclass(kw_only=True)
class MsgGate2LsConnect(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "BB16sI17s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"ip_address", "name"})

    ctrl: int = 0x02
    cmd: int = 0xE0
    server_id: int = 0
    agent_id: int = 0
    ip_address: str = ""
    port: int = 0
    name: str = ""


@dataclass(kw_only=True)
class MsgGate2LsAccLogout(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "B21s9s7s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"account", "logout_date", "logout_time"})

    ctrl: int = 0x02
    cmd: int = 0xE2
    reason: int = 0
    account: str = ""
    logout_date: str = ""
    logout_time: str = ""


@dataclass(kw_only=True)
class MsgGate2LsPreparedAccLogin(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "21s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"account"})

    ctrl: int = 0x02
    cmd: int = 0xE3
    account: str = ""


@dataclass(kw_only=True)
class MsgGate2ZsConnect(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "B"

    ctrl: int = 0x01
    cmd: int = 0xE0
    agent_id: int = 0


@dataclass(kw_only=True)
class MsgGate2AsNewClient(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "21s21s16s78s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"account", "password", "client_ip"})

    ctrl: int = 0x01
    cmd: int = 0xE1
    account: str = ""
    password: str = ""
    client_ip: str = ""
    unknown: bytes = field(default=bytes(78))


@dataclass(kw_only=True)
class MsgZa2ZsAccLogout(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "B"

    ctrl: int = 0x01
    cmd: int = 0xE2
    reason: int = 0


@dataclass(kw_only=True)
class MsgLs2ClSay(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "B81s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"words"})

    ctrl: int = 0x01
    cmd: int = 0xE0
    say_type: int = 0x00
    words: str = ""


@dataclass(kw_only=True)
class GateServerInfo(Message):
    """One entry of the server list sent to a client after login."""

    _FORMAT: ClassVar[str] = "B17s81s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"server_name", "server_status"})

    server_id: int = 0
    server_name: str = ""
    server_status: str = ""


@dataclass(kw_only=True)
class MsgLs2GateLogin(MsgHeadNoProtocol):
    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "21s9s"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"account"})

    ctrl: int = 0x01
    cmd: int = 0xE1
    account: str = ""
    unknown: bytes = field(default=bytes(9))


@dataclass(kw_only=True)
class MsgS2CGateInfo(MsgHeadNoProtocol):
    """Gate address for the client; ``account_id`` defaults to the header's ``pc_id``."""

    _FORMAT: ClassVar[str] = _HEAD_NO_PROTOCOL + "I16sI"
    _TEXT: ClassVar[frozenset[str]] = frozenset({"za_ip"})

    ctrl: int = 0x01
    cmd: int = 0xE2
    account_id: int | None = None
    za_ip: str = ""
    za_port: int = 0

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.account_id is None:
            self.account_id = self.pc_id