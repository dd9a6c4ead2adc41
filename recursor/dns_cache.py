"""A sharded, size-bounded cache of answers keyed by question."""

from __future__ import annotations

import copy
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, replace

import dns.message

from recursor.records import Question

SHARD_COUNT = 32
DEFAULT_MAX_SIZE = 10000
DEFAULT_TTL = 3600
ZERO_TTL_REPLACEMENT = 300
MIN_TTL = 60
MAX_TTL = 86400
NEGATIVE_TTL = 300

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


def _fnv1a_32(data: bytes) -> int:
    value = _FNV_OFFSET
    for byte in data:
        value ^= byte
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return value


def _key(question: Question, suffix: str = "") -> str:
    return f"{question.name}-{int(question.qtype)}-{int(question.qclass)}{suffix}"


@dataclass
class CacheStats:
    """Counters describing how the cache has been used."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expired: int = 0
    negative: int = 0


@dataclass
class _Entry:
    msg: dns.message.Message
    expires: float
    key: str
    is_negative: bool = False
    frequency: int = 1


class _Shard:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        # Least recently used first, most recently used last.
        self.entries: OrderedDict[str, _Entry] = OrderedDict()


class DNSCache:
    """Answers stored per question, with LRU eviction and bounded TTLs."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_size = max_size
        self._clock = clock
        self._shards = [_Shard() for _ in range(SHARD_COUNT)]
        self._stats = CacheStats()
        self._stats_lock = threading.Lock()

    def _shard(self, key: str) -> _Shard:
        return self._shards[_fnv1a_32(key.encode()) % len(self._shards)]

    def _count(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    def _evict(self, shard: _Shard, key: str) -> None:
        del shard.entries[key]
        self._count("evictions")

    def _ensure_capacity(self, shard: _Shard) -> None:
        max_shard_size = self.max_size // len(self._shards)
        while shard.entries and len(shard.entries) >= max_shard_size:
            oldest = next(iter(shard.entries))
            self._evict(shard, oldest)

    def _store(self, shard: _Shard, entry: _Entry) -> None:
        shard.entries.pop(entry.key, None)
        shard.entries[entry.key] = entry

    def get(self, question: Question, request_id: int = 0) -> dns.message.Message | None:
        """A copy of the cached answer carrying request_id, or None."""
        key = _key(question)
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is not None:
                if self._clock() < entry.expires:
                    entry.frequency += 1
                    shard.entries.move_to_end(key)
                    reply = copy.deepcopy(entry.msg)
                    reply.id = request_id
                    self._count("hits")
                    return reply
                self._count("expired")
                self._evict(shard, key)
        self._count("misses")
        return None

    def set(self, question: Question, msg: dns.message.Message) -> None:
        """Store a copy of msg for its lowest TTL, kept between one minute and a day."""
        key = _key(question)
        shard = self._shard(key)

        ttl = DEFAULT_TTL
        for section in (msg.answer, msg.authority, msg.additional):
            for rrset in section:
                ttl = min(ttl, rrset.ttl)
        if ttl == 0:
            ttl = ZERO_TTL_REPLACEMENT
        ttl = max(MIN_TTL, min(ttl, MAX_TTL))

        with shard.lock:
            self._ensure_capacity(shard)
            entry = _Entry(
                msg=copy.deepcopy(msg),
                expires=self._clock() + ttl,
                key=key,
            )
            self._store(shard, entry)

    def set_negative(self, question: Question, rcode: int) -> None:
        """Record that question failed with rcode, for five minutes."""
        key = _key(question, "-negative")
        shard = self._shard(key)

        query = dns.message.make_query(question.name, question.qtype, question.qclass)
        query.id = 0
        query.flags = 0
        msg = dns.message.make_response(query)
        msg.set_rcode(rcode)

        with shard.lock:
            self._ensure_capacity(shard)
            entry = _Entry(
                msg=msg,
                expires=self._clock() + NEGATIVE_TTL,
                key=key,
                is_negative=True,
            )
            self._store(shard, entry)
        self._count("negative")

    def stats(self) -> CacheStats:
        """A snapshot of the counters."""
        with self._stats_lock:
            return replace(self._stats)

    def size(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total

    def clear(self) -> None:
        """Drop every entry; the counters are kept."""
        for shard in self._shards:
            with shard.lock:
                shard.entries = OrderedDict()

    def all_questions(self) -> list[Question]:
        """Questions of every live positive entry whose name has no hyphen."""
        now = self._clock()
        questions: list[Question] = []
        for shard in self._shards:
            with shard.lock:
                live = [key for key, entry in shard.entries.items() if now < entry.expires]
            for key in live:
                parts = key.split("-")
                if len(parts) == 3:
                    questions.append(Question(parts[0], int(parts[1]), int(parts[2])))
        return questions

    def clean_expired(self) -> None:
        """Remove every entry whose lifetime has passed."""
        now = self._clock()
        for shard in self._shards:
            with shard.lock:
                stale = [key for key, entry in shard.entries.items() if now > entry.expires]
                for key in stale:
                    del shard.entries[key]
                    self._count("expired")