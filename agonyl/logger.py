"""Structured JSON-lines logger tagged with a service name."""

from __future__ import annotations

import json
import sys
import threading
from enum import IntEnum
from typing import Any, TextIO

_WRITE_LOCK = threading.Lock()


class Level(IntEnum):
    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3

    @classmethod
    def parse(cls, name: str) -> Level:
        key = name.strip().upper()
        if key == "WARNING":
            key = "WARN"
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"unknown log level: {name!r}") from None


class Logger:
    """Writes one JSON object per record to a stream (standard output by default)."""

    def __init__(
        self,
        service: str,
        level: Level | str = Level.INFO,
        stream: TextIO | None = None,
        fields: dict[str, Any] | None = None,
    ) -> None:
        self.service = service
        self.level = Level.parse(level) if isinstance(level, str) else Level(level)
        self._stream = stream
        self._fields = dict(fields or {})

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(Level.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(Level.INFO, msg, kwargs)

    def warn(self, msg: str, **kwargs: Any) -> None:
        self._log(Level.WARN, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(Level.ERROR, msg, kwargs)

    def with_fields(self, **kwargs: Any) -> Logger:
        """Return a logger that adds ``kwargs`` to every record."""
        return Logger(self.service, self.level, self._stream, {**self._fields, **kwargs})

    def _log(self, level: Level, msg: str, fields: dict[str, Any]) -> None:
        if level < self.level:
            return
        record = {
            "level": level.name.lower(),
            "service": self.service,
            **self._fields,
            **fields,
            "message": msg,
        }
        line = json.dumps(record, default=str)
        stream = self._stream if self._stream is not None else sys.stdout
        with _WRITE_LOCK:
            stream.write(line + "\n")
            stream.flush()