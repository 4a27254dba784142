"""TCP server scaffolding: packet framing, per-connection send queues and the accept loop."""

from __future__ import annotations

import contextlib
import queue
import socket
import threading
from collections.abc import Callable, Iterator
from typing import Protocol, runtime_checkable

from agonyl.logger import Logger
from agonyl.safe import SafeMap
from agonyl.uid import UidGenerator

MAX_PACKET_SIZE = 16 * 1024 * 1024
SEND_QUEUE_CAPACITY = 100
_ACCEPT_POLL_INTERVAL = 0.2
_STOP = object()


class SendError(ConnectionError):
    """A packet could not be queued for sending."""


class ServerError(RuntimeError):
    """The server could not be started."""


@runtime_checkable
class TCPServerSession(Protocol):
    id: int

    def handle(self) -> None: ...

    def close(self) -> None: ...

    def send(self, data: bytes) -> None: ...


class PacketSender:
    """Queues outgoing packets and writes them from a background thread."""

    def __init__(
        self,
        write: Callable[[bytes], object],
        on_error: Callable[[OSError], object] | None = None,
        capacity: int = SEND_QUEUE_CAPACITY,
    ) -> None:
        self._write = write
        self._on_error = on_error
        self._capacity = capacity
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="packet-sender", daemon=True)
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, data: bytes) -> None:
        with self._lock:
            if self._closed:
                raise SendError("session is closing")
            if self._queue.qsize() >= self._capacity:
                raise SendError("send channel is full")
            self._queue.put(bytes(data))

    def close(self) -> None:
        """Stop the sender thread once queued packets are written; safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
        if threading.current_thread() is not self._thread:
            self._thread.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self._write(item)
            except OSError as exc:
                if self._on_error is not None:
                    self._on_error(exc)
                return


def _read_exact(read: Callable[[int], bytes], size: int) -> bytes | None:
    buffer = bytearray()
    while len(buffer) < size:
        try:
            chunk = read(size - len(buffer))
        except OSError:
            return None
        if not chunk:
            return None
        buffer += chunk
    return bytes(buffer)


def iter_packets(read: Callable[[int], bytes]) -> Iterator[bytes]:
    """Yield length-prefixed packets (prefix included) until EOF, error or an oversized length."""
    while True:
        header = _read_exact(read, 4)
        if header is None:
            return
        length = int.from_bytes(header, "little")
        if length == 0:
            continue
        if length > MAX_PACKET_SIZE:
            return
        if length <= 4:
            yield header[:length]
            continue
        body = _read_exact(read, length - 4)
        if body is None:
            return
        yield header + body


def _split_host_port(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    return host, int(port)


class TCPServer:
    """Listens on ``addr`` and runs one session per accepted connection on its own thread."""

    def __init__(
        self,
        name: str,
        addr: str,
        logger: Logger,
        new_session: Callable[[int, socket.socket], TCPServerSession],
        uid_generator: UidGenerator | None = None,
    ) -> None:
        self.name = name
        self.addr = addr
        self.logger = logger
        self.new_session = new_session
        self.uid_generator = uid_generator if uid_generator is not None else UidGenerator(0)
        self.sessions: SafeMap[int, TCPServerSession] = SafeMap()
        self.listener: socket.socket | None = None
        self._running = threading.Event()
        self._accept_thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._running.is_set()

    @property
    def address(self) -> tuple | None:
        """The bound socket address while listening."""
        if self.listener is None or not self.running:
            return None
        return self.listener.getsockname()

    def start(self) -> None:
        if self.running:
            self.logger.error("server already running")
            raise ServerError(f"server {self.name} already running")
        try:
            host, port = _split_host_port(self.addr)
            listener = socket.create_server((host, port))
        except (OSError, ValueError) as exc:
            self.logger.error("server failed to start", error=exc)
            raise ServerError(f"server {self.name} failed to start: {exc}") from exc
        listener.settimeout(_ACCEPT_POLL_INTERVAL)
        self.listener = listener
        self._running.set()
        self.logger.info(f"{self.name} server started", addr=self.addr)
        self._accept_thread = threading.Thread(
            target=self.accept_loop, name=f"{self.name}-accept", daemon=True
        )
        self._accept_thread.start()

    def stop(self) -> None:
        if not self.running:
            self.logger.info(f"{self.name} server not running")
            return
        self._running.clear()
        if self.listener is not None:
            self.listener.close()
        for session in self.sessions.values():
            with contextlib.suppress(OSError):
                session.close()
        thread = self._accept_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self.logger.info(f"{self.name} server stopped")

    def add_session(self, session_id: int, session: TCPServerSession) -> None:
        self.sessions.set(session_id, session)

    def remove_session(self, session_id: int) -> None:
        self.sessions.delete(session_id)

    def get_session(self, session_id: int) -> TCPServerSession | None:
        return self.sessions.get(session_id)

    def accept_loop(self) -> None:
        while self.running:
            try:
                conn, _ = self.listener.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if not self.running:
                    return
                self.logger.error(f"{self.name} server accept error", error=exc)
                continue
            conn.settimeout(None)
            session_id = self.uid_generator.next()
            session = self.new_session(session_id, conn)
            self.add_session(session_id, session)
            threading.Thread(
                target=session.handle, name=f"{self.name}-session-{session_id}", daemon=True
            ).start()