"""A thread-safe store of known zones, keyed by canonical name."""

from __future__ import annotations

import threading
from typing import Protocol

from recursor.records import canonical_name, label_indexes


class _StoredZone(Protocol):
    name: str
    parent: str

    def expired(self) -> bool: ...


class ZoneStore:
    """Zones the resolver has learnt about, looked up by name."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._zones: dict[str, _StoredZone] = {}

    def get_zone_list(self, name: str) -> list[_StoredZone]:
        """Known zones along name with an unbroken chain to the root, longest first."""
        name = canonical_name(name)
        suffixes = [name[index:] for index in label_indexes(name)]
        suffixes.append(name[len(name) - 1:])
        suffixes.reverse()

        with self._lock:
            if not self._zones:
                return []
            candidates = [self._zones.get(suffix) for suffix in suffixes]

        result: list[_StoredZone] = []
        for zone in candidates:
            if zone is None or zone.expired():
                continue
            # A zone whose parent is not the last zone seen breaks the chain.
            if result and zone.parent != result[-1].name:
                break
            result.append(zone)

        result.reverse()
        return result

    def get(self, name: str) -> _StoredZone | None:
        """The zone of that name, unless it is unknown or has expired."""
        with self._lock:
            zone = self._zones.get(canonical_name(name))
        if zone is not None and zone.expired():
            return None
        return zone

    def add(self, zone: _StoredZone) -> None:
        """Store zone, replacing any zone of the same name."""
        with self._lock:
            self._zones[canonical_name(zone.name)] = zone

    def count(self) -> int:
        with self._lock:
            return len(self._zones)