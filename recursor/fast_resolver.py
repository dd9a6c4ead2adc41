"""A caching resolver that races public resolvers and prefetches popular names."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from typing import Any, Protocol

import dns.flags
import dns.message
import dns.rcode
import dns.rdataclass
import dns.rdatatype

from recursor.errors import ResolverError
from recursor.fast_pool import QueryFunction, udp_query
from recursor.records import Question

logger = logging.getLogger(__name__)

DEFAULT_NAMESERVERS = ("8.8.8.8:53", "8.8.4.4:53", "1.1.1.1:53", "1.0.0.1:53")
POPULAR_TLDS = ("com.", "net.", "org.", "io.")
POPULAR_DOMAINS = (
    "google.com.",
    "facebook.com.",
    "youtube.com.",
    "twitter.com.",
    "instagram.com.",
)
OVERALL_TIMEOUT = 0.100
QUERY_TIMEOUT = 0.050
PREFETCH_QUEUE_SIZE = 1000
WARMING_INTERVAL = 300.0

_STOP = object()


class _Cache(Protocol):
    def get(self, zone_name: str, question: Question) -> dns.message.Message | None: ...

    def update(
        self, zone_name: str, question: Question, msg: dns.message.Message
    ) -> None: ...


@dataclass
class FastResolverStats:
    """Counters for the fast resolver."""

    hits: int = 0
    misses: int = 0
    prefetch: int = 0
    timeouts: int = 0
    cache_size: int = 0


@dataclass
class ResolveResult:
    """The outcome of asking one server."""

    response: dns.message.Message | None = None
    server: str = ""
    duration: float = 0.0
    error: BaseException | None = None


class FastResolver:
    """Answers from a cache, otherwise from whichever resolver replies first."""

    def __init__(
        self,
        cache: _Cache | Any,
        *,
        nameservers: Sequence[str] = DEFAULT_NAMESERVERS,
        query: QueryFunction | None = None,
        overall_timeout: float = OVERALL_TIMEOUT,
        query_timeout: float = QUERY_TIMEOUT,
    ) -> None:
        self.cache = cache
        self.nameservers = list(nameservers)
        self.overall_timeout = overall_timeout
        self.query_timeout = query_timeout
        self._query = query or udp_query
        self._stats = FastResolverStats()
        self._lock = threading.Lock()
        self._prefetch: queue.Queue[Any] = queue.Queue(PREFETCH_QUEUE_SIZE)
        self._stopped = threading.Event()
        self._worker = threading.Thread(target=self._prefetch_worker, daemon=True)
        self._worker.start()

    def _count(self, counter: str) -> None:
        with self._lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    def exchange_with_optimization(self, question: Question) -> dns.message.Message:
        """The answer to question, from the cache or the fastest server."""
        try:
            cached = self.cache.get("", question)
        except Exception:
            cached = None
        if cached is not None:
            self._count("hits")
            return cached

        self._count("misses")
        result = self._concurrent_resolve(question)
        if result.error is not None:
            raise result.error
        if result.response is None:
            raise ResolverError("no nameservers available")

        try:
            self.cache.update("", question, result.response)
        except Exception as error:
            logger.warning("cache update for [%s] failed: %s", question.name, error)

        if self.should_prefetch(question.name):
            try:
                self._prefetch.put_nowait(question.name)
            except queue.Full:
                pass

        return result.response

    def _ask(self, question: Question, server: str, started: float) -> ResolveResult:
        msg = dns.message.make_query(question.name, question.qtype, question.qclass)
        msg.flags |= dns.flags.RD
        try:
            reply, _ = self._query(msg, server, self.query_timeout)
        except Exception as error:
            return ResolveResult(
                server=server, duration=time.monotonic() - started, error=error
            )
        return ResolveResult(
            response=reply, server=server, duration=time.monotonic() - started
        )

    def _concurrent_resolve(self, question: Question) -> ResolveResult:
        servers = self.get_nameservers(question.name)
        if not servers:
            return ResolveResult(error=ResolverError("no nameservers available"))

        started = time.monotonic()
        deadline = started + self.overall_timeout
        executor = ThreadPoolExecutor(max_workers=len(servers))
        try:
            pending: set[Future] = {
                executor.submit(self._ask, question, server, started)
                for server in servers
            }
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._count("timeouts")
                    return ResolveResult(
                        error=TimeoutError("no successful answer before the deadline")
                    )
                done, pending = wait(
                    pending, timeout=remaining, return_when=FIRST_COMPLETED
                )
                for future in done:
                    result = future.result()
                    if (
                        result.error is None
                        and result.response is not None
                        and result.response.rcode() == dns.rcode.NOERROR
                    ):
                        return result
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return ResolveResult(error=ResolverError("no nameservers available"))

    def get_nameservers(self, domain: str) -> list[str]:
        """The servers to ask; the same for every name."""
        return list(self.nameservers)

    def should_prefetch(self, domain: str) -> bool:
        """True for names under a popular top-level domain."""
        return any(len(domain) > len(tld) and domain.endswith(tld) for tld in POPULAR_TLDS)

    def _prefetch_worker(self) -> None:
        while True:
            name = self._prefetch.get()
            if name is _STOP:
                return
            try:
                self.exchange_with_optimization(
                    Question(name, dns.rdatatype.A, dns.rdataclass.IN)
                )
            except Exception as error:
                logger.debug("prefetch of [%s] failed: %s", name, error)
            self._count("prefetch")

    def get_stats(self) -> FastResolverStats:
        """A snapshot of the counters."""
        with self._lock:
            return replace(self._stats)

    def start_cache_warming(self) -> None:
        """Resolve the popular names every five minutes until close()."""

        def loop() -> None:
            while not self._stopped.wait(WARMING_INTERVAL):
                self.warm_popular_domains()

        threading.Thread(target=loop, daemon=True).start()

    def warm_popular_domains(self) -> None:
        """Resolve each popular name once, ignoring failures."""
        for name in POPULAR_DOMAINS:
            try:
                self.exchange_with_optimization(
                    Question(name, dns.rdatatype.A, dns.rdataclass.IN)
                )
            except Exception as error:
                logger.debug("warming [%s] failed: %s", name, error)

    def close(self) -> None:
        """Finish queued prefetches and stop background work."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._prefetch.put(_STOP)
        self._worker.join()