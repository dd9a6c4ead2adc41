"""Querying several nameservers at once and keeping the first answer."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace

import dns.message
import dns.query
import dns.rdatatype

from recursor.errors import ResolverError

FAST_TIMEOUT = 0.030
QUICK_QUERY_TIMEOUT = 0.025
FALLBACK_TIMEOUT = 0.200
LATENCY_PROBE_TIMEOUT = 0.100
LATENCY_THRESHOLD = 0.050
DNS_PORT = 53

# Sends msg to "host:port" with the given timeout; returns (reply, rtt seconds).
QueryFunction = Callable[
    [dns.message.Message, str, float], "tuple[dns.message.Message | None, float]"
]


def udp_query(
    msg: dns.message.Message, address: str, timeout: float
) -> tuple[dns.message.Message, float]:
    """Send msg over UDP to address ("host:port") and time the round trip."""
    host, _, port = address.rpartition(":")
    started = time.monotonic()
    reply = dns.query.udp(msg, host.strip("[]"), timeout=timeout, port=int(port))
    return reply, time.monotonic() - started


@dataclass
class PoolStats:
    """Counters for the fast pool."""

    ipv4_requests: int = 0
    ipv6_requests: int = 0
    timeouts: int = 0
    fallbacks: int = 0


class FastNameserverPool:
    """Races a query across nameservers under a tight deadline."""

    def __init__(
        self,
        fast_timeout: float = FAST_TIMEOUT,
        query: QueryFunction | None = None,
    ) -> None:
        self.fast_timeout = fast_timeout
        self._query = query or udp_query
        self._stats = PoolStats()
        self._lock = threading.Lock()

    @property
    def stats(self) -> PoolStats:
        """A snapshot of the counters."""
        with self._lock:
            return replace(self._stats)

    def _count(self, counter: str) -> None:
        with self._lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    def _quick_query(
        self, server: str, msg: dns.message.Message
    ) -> tuple[dns.message.Message | None, float]:
        self._count("ipv6_requests" if ":" in server else "ipv4_requests")
        return self._query(msg, f"{server}:{DNS_PORT}", QUICK_QUERY_TIMEOUT)

    def exchange_fast(
        self, servers: Sequence[str], msg: dns.message.Message
    ) -> tuple[dns.message.Message, float]:
        """The first reply or error from any server; TimeoutError past the deadline."""
        if not servers:
            raise ResolverError("no nameservers available")

        executor = ThreadPoolExecutor(max_workers=len(servers))
        try:
            pending: set[Future] = {
                executor.submit(self._quick_query, server, msg) for server in servers
            }
            deadline = time.monotonic() + self.fast_timeout
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                done, pending = wait(
                    pending, timeout=remaining, return_when=FIRST_COMPLETED
                )
                for future in done:
                    error = future.exception()
                    if error is not None:
                        raise error
                    reply, rtt = future.result()
                    if reply is not None:
                        return reply, rtt
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        self._count("timeouts")
        raise TimeoutError("no nameserver answered before the deadline")

    def exchange_with_fallback(
        self, servers: Sequence[str], msg: dns.message.Message
    ) -> tuple[dns.message.Message, float]:
        """Race the servers; if that fails, ask the first one with a longer timeout."""
        try:
            reply, rtt = self.exchange_fast(servers, msg)
            if reply is not None:
                return reply, rtt
        except Exception:
            pass

        if not servers:
            raise ResolverError("no nameservers available")

        self._count("fallbacks")
        return self._query(msg, f"{servers[0]}:{DNS_PORT}", FALLBACK_TIMEOUT)

    def measure_latency(self, servers: Sequence[str]) -> dict[str, float]:
        """Seconds each server took to answer a root NS query; failures are left out."""
        latency: dict[str, float] = {}
        if not servers:
            return latency
        lock = threading.Lock()

        def probe(server: str) -> None:
            started = time.monotonic()
            msg = dns.message.make_query(".", dns.rdatatype.NS)
            try:
                self._query(msg, f"{server}:{DNS_PORT}", LATENCY_PROBE_TIMEOUT)
            except Exception:
                return
            with lock:
                latency[server] = time.monotonic() - started

        with ThreadPoolExecutor(max_workers=len(servers)) as executor:
            list(executor.map(probe, servers))
        return latency

    def select_best_servers(
        self, servers: Sequence[str], max_servers: int
    ) -> list[str]:
        """Servers answering within 50 ms, in the given order, at most max_servers."""
        latency = self.measure_latency(servers)
        fast = [
            server
            for server in servers
            if server in latency and latency[server] < LATENCY_THRESHOLD
        ]
        return fast[:max_servers]