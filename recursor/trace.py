"""Per-query tracing and the state carried through one resolution."""

from __future__ import annotations

import dataclasses
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _uuid7() -> uuid.UUID:
    millis = time.time_ns() // 1_000_000
    value = (millis & ((1 << 48) - 1)) << 80 | int.from_bytes(os.urandom(10), "big")
    value = (value & ~(0xF << 76)) | (0x7 << 76)
    value = (value & ~(0x3 << 62)) | (0x2 << 62)
    return uuid.UUID(int=value)


@dataclass
class Trace:
    """Identifies one query and counts the resolution passes it took."""

    id: uuid.UUID = field(default_factory=_uuid7)
    start: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _iterations: int = field(default=0, init=False, repr=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def short_id(self) -> str:
        """The last seven characters of the identifier."""
        return str(self.id)[29:]

    def iteration(self) -> int:
        with self._lock:
            return self._iterations

    def increment(self) -> int:
        with self._lock:
            self._iterations += 1
            return self._iterations


class _Counter:
    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def add(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


@dataclass(frozen=True)
class QueryContext:
    """State shared by every step of resolving one query."""

    trace: Trace = field(default_factory=Trace)
    start: float = field(default_factory=time.monotonic)
    zone_name: str | None = None
    _queries: _Counter = field(default_factory=_Counter, repr=False, compare=False)

    def with_zone(self, zone_name: str) -> QueryContext:
        """A context for the given zone that shares this one's trace and counter."""
        return dataclasses.replace(self, zone_name=zone_name)

    def next_query(self) -> int:
        """Count one more query made for this request and return the total."""
        return self._queries.add()

    @property
    def queries(self) -> int:
        return self._queries.value

    @property
    def elapsed(self) -> float:
        """Seconds since the query started."""
        return time.monotonic() - self.start