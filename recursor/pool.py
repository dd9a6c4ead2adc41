"""A zone's set of nameservers, chosen in turn by address family."""

from __future__ import annotations

import enum
import threading
import time
from collections.abc import Iterable

import dns.message
import dns.rdatatype
import dns.rrset

from recursor.errors import NoPoolConfiguredForZoneError, UnableToResolveAnswerError
from recursor.ipv6 import ipv6_available
from recursor.nameserver import Nameserver
from recursor.records import canonical_name
from recursor.response import Exchanger, Response, response_error
from recursor.trace import QueryContext

MAX_ALLOWED_TTL = 172800
DESIRED_NAMESERVERS_PER_ZONE = 3


class PoolStatus(enum.IntEnum):
    EMPTY = 0
    EXPIRED = 1
    HAS_HOSTNAMES_BUT_NO_IP_ADDRESSES = 2
    PRIMED_BUT_NEEDS_ENHANCING = 3
    PRIMED = 4


def find_addresses_for_hostname(
    hostname: str, records: Iterable[dns.rrset.RRset]
) -> tuple[list[str], list[str], int]:
    """IPv4 and IPv6 addresses of hostname among records, and their lowest TTL."""
    hostname = canonical_name(hostname)
    ipv4: list[str] = []
    ipv6: list[str] = []
    ttl = MAX_ALLOWED_TTL
    for rrset in records:
        if canonical_name(rrset.name.to_text()) != hostname:
            continue
        if rrset.rdtype == dns.rdatatype.A:
            ipv4.extend(rdata.address for rdata in rrset)
            ttl = min(rrset.ttl, ttl)
        elif rrset.rdtype == dns.rdatatype.AAAA:
            ipv6.extend(rdata.address for rdata in rrset)
            ttl = min(rrset.ttl, ttl)
    return ipv4, ipv6, ttl


class NameserverPool:
    """Nameservers of one zone, with hosts whose addresses are still unknown."""

    def __init__(
        self,
        ipv4: Iterable[Exchanger] = (),
        ipv6: Iterable[Exchanger] = (),
        hosts_without_addresses: Iterable[str] = (),
        expires: int = 0,
    ) -> None:
        self._lock = threading.RLock()
        self.ipv4: list[Exchanger] = list(ipv4)
        self.ipv6: list[Exchanger] = list(ipv6)
        self.hosts_without_addresses: list[str] = list(hosts_without_addresses)
        # Unix seconds; zero means the pool never expires.
        self.expires = expires
        self._ipv4_next = 0
        self._ipv6_next = 0

    @classmethod
    def from_records(
        cls,
        nameservers: Iterable[dns.rrset.RRset],
        extra: Iterable[dns.rrset.RRset],
    ) -> NameserverPool:
        """Build a pool from NS records and any glue address records."""
        extra = list(extra)
        pool = cls()
        ttl = MAX_ALLOWED_TTL
        for rrset in nameservers:
            if rrset.rdtype != dns.rdatatype.NS:
                continue
            for rdata in rrset:
                hostname = canonical_name(rdata.target.to_text())
                ttl = min(rrset.ttl, ttl)
                ipv4, ipv6, min_ttl = find_addresses_for_hostname(hostname, extra)
                if not ipv4 and not ipv6:
                    pool.hosts_without_addresses.append(hostname)
                    continue
                ttl = min(min_ttl, ttl)
                pool._add(hostname, ipv4, ipv6)
        pool.expires = int(time.time()) + ttl
        return pool

    def _add(self, hostname: str, ipv4: list[str], ipv6: list[str]) -> None:
        self.ipv4.extend(Nameserver(hostname=hostname, addr=addr) for addr in ipv4)
        self.ipv6.extend(Nameserver(hostname=hostname, addr=addr) for addr in ipv6)

    def has_ipv4(self) -> bool:
        return self.count_ipv4() > 0

    def has_ipv6(self) -> bool:
        return self.count_ipv6() > 0

    def count_ipv4(self) -> int:
        with self._lock:
            return len(self.ipv4)

    def count_ipv6(self) -> int:
        with self._lock:
            return len(self.ipv6)

    def get_ipv4(self) -> Exchanger | None:
        """The next IPv4 nameserver in turn, or None if there are none."""
        with self._lock:
            if not self.ipv4:
                return None
            index = self._ipv4_next % len(self.ipv4)
            self._ipv4_next = index + 1
            return self.ipv4[index]

    def get_ipv6(self) -> Exchanger | None:
        """The next IPv6 nameserver in turn, or None if there are none."""
        with self._lock:
            if not self.ipv6:
                return None
            index = self._ipv6_next % len(self.ipv6)
            self._ipv6_next = index + 1
            return self.ipv6[index]

    def expired(self) -> bool:
        return 0 < self.expires < int(time.time())

    def status(self) -> PoolStatus:
        with self._lock:
            ipv4_count = len(self.ipv4)
            ipv6_count = len(self.ipv6)
            unresolved = len(self.hosts_without_addresses)

        if ipv4_count == 0 and ipv6_count == 0 and unresolved == 0:
            return PoolStatus.EMPTY

        total = ipv4_count
        if ipv6_available():
            total += ipv6_count

        if total == 0:
            return PoolStatus.HAS_HOSTNAMES_BUT_NO_IP_ADDRESSES

        if total < DESIRED_NAMESERVERS_PER_ZONE and unresolved > 0:
            return PoolStatus.PRIMED_BUT_NEEDS_ENHANCING

        return PoolStatus.PRIMED

    def enrich(self, records: Iterable[dns.rrset.RRset]) -> None:
        """Give addresses to hosts that lacked them, from the given address records."""
        records = list(records)
        if not records:
            return
        with self._lock:
            ttl = MAX_ALLOWED_TTL
            still_without: list[str] = []
            for hostname in self.hosts_without_addresses:
                ipv4, ipv6, min_ttl = find_addresses_for_hostname(hostname, records)
                if not ipv4 and not ipv6:
                    still_without.append(hostname)
                    continue
                ttl = min(min_ttl, ttl)
                self._add(hostname, ipv4, ipv6)

            if self.expires > 0:
                self.expires = int(time.time()) + ttl

            self.hosts_without_addresses = still_without

    def exchange(self, ctx: QueryContext, msg: dns.message.Message) -> Response:
        """Ask one nameserver, preferring IPv6, and one more if that fails."""
        has_ipv4 = self.has_ipv4()
        has_ipv6 = self.has_ipv6()

        if not has_ipv4 and not has_ipv6:
            detail = f"[{ctx.zone_name}]" if ctx.zone_name is not None else ""
            return response_error(NoPoolConfiguredForZoneError(detail))

        response: Response | None = None

        server = self.get_ipv6() if has_ipv6 and ipv6_available() else self.get_ipv4()
        if server is not None:
            response = server.exchange(ctx, msg)

        if (
            response is None
            or response.is_empty()
            or response.has_error()
            or response.truncated()
        ):
            # One more try; with several nameservers this reaches a different one.
            server = self.get_ipv4() if has_ipv4 else self.get_ipv6()
            if server is not None:
                response = server.exchange(ctx, msg)

        if response is None:
            response = Response()

        if response.is_empty() or response.has_error():
            qname = msg.question[0].name.to_text() if msg.question else ""
            detail = (
                "all nameservers tried returned an unsucessful response "
                f"for qname [{qname}]"
            )
            if ctx.zone_name is not None:
                detail += f" in zone [{ctx.zone_name}]"
            previous = response.error
            if previous is not None:
                detail += f" (after: {previous})"
            error = UnableToResolveAnswerError(detail)
            error.__cause__ = previous
            response.error = error

        return response