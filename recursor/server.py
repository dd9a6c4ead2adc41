"""A UDP DNS server that answers from a cache and resolves misses recursively."""

from __future__ import annotations

import argparse
import logging
import queue
import socket
import threading
from collections import Counter
from collections.abc import Callable, Sequence
from typing import Any

import dns.flags
import dns.message
import dns.rcode

from recursor.dns_cache import DNSCache
from recursor.records import Question, is_set_do
from recursor.resolver import Resolver

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5355
DEFAULT_WORKERS = 10
DEFAULT_QUEUE_SIZE = 100
DEFAULT_CACHE_SIZE = 10000
PREFETCH_THRESHOLD = 3
PREFETCH_INTERVAL = 60.0
STATS_INTERVAL = 60.0
CLEAN_INTERVAL = 30.0
EDNS_PAYLOAD = 4096
_POLL = 0.5
_MAX_DATAGRAM = 65535

Spawn = Callable[[Callable[[], Any]], None]


def _spawn_thread(task: Callable[[], Any]) -> None:
    threading.Thread(target=task, daemon=True).start()


def _question_of(msg: dns.message.Message) -> Question:
    first = msg.question[0]
    return Question(first.name.to_text(), int(first.rdtype), int(first.rdclass))


class PrefetchManager:
    """Refreshes answers that are asked for often, ahead of their expiry."""

    def __init__(
        self,
        cache: DNSCache,
        resolver: Any,
        threshold: int = PREFETCH_THRESHOLD,
        spawn: Spawn | None = None,
    ) -> None:
        self.cache = cache
        self.resolver = resolver
        self.threshold = threshold
        self._spawn = spawn or _spawn_thread
        self._popular: Counter[str] = Counter()
        self._lock = threading.Lock()

    def record_access(self, question: Question) -> bool:
        """Count one access; schedule a prefetch and return True at the threshold."""
        key = f"{question.name}-{question.qtype}-{question.qclass}"
        with self._lock:
            self._popular[key] += 1
            if self._popular[key] < self.threshold:
                return False
            self._popular[key] = 0
        self._spawn(lambda: self.prefetch_record(question))
        return True

    def prefetch_record(self, question: Question) -> bool:
        """Resolve and cache question unless it is cached already; True if stored."""
        if self.cache.get(question, 0) is not None:
            return False
        query = dns.message.make_query(
            question.name,
            question.qtype,
            question.qclass,
            use_edns=0,
            want_dnssec=True,
            payload=EDNS_PAYLOAD,
        )
        response = self.resolver.exchange(None, query)
        if response.has_error() or response.is_empty():
            return False
        self.cache.set(question, response.msg)
        return True

    def prefetch_all(self) -> int:
        """Schedule a refresh of every cached question and reset the counts."""
        with self._lock:
            questions = self.cache.all_questions()
            for question in questions:
                self._spawn(lambda q=question: self.prefetch_record(q))
            self._popular = Counter()
        return len(questions)


class Server:
    """Receives queries over UDP and hands them to a pool of worker threads."""

    def __init__(
        self,
        resolver: Any = None,
        cache: DNSCache | None = None,
        *,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        host: str = "",
        port: int = DEFAULT_PORT,
        prefetch_threshold: int = PREFETCH_THRESHOLD,
        spawn: Spawn | None = None,
    ) -> None:
        self.cache = cache if cache is not None else DNSCache(DEFAULT_CACHE_SIZE)
        self.resolver = resolver if resolver is not None else Resolver(cache=self.cache)
        self.workers = workers
        self.host = host
        self.port = port
        self.prefetch = PrefetchManager(
            self.cache, self.resolver, threshold=prefetch_threshold, spawn=spawn
        )
        self.address: tuple[str, int] | None = None
        self.ready = threading.Event()
        self._queries: queue.Queue[tuple[bytes, Any]] = queue.Queue(queue_size)
        self._stopped = threading.Event()
        self._socket: socket.socket | None = None

    def process_query(self, msg: dns.message.Message) -> dns.message.Message:
        """The reply to send for one query."""
        reply = dns.message.make_response(msg)
        reply.flags &= ~dns.flags.AA
        wants_dnssec = is_set_do(msg)
        if msg.edns >= 0:
            reply.use_edns(0, dns.flags.DO if wants_dnssec else 0, EDNS_PAYLOAD)

        if not msg.question:
            reply.set_rcode(dns.rcode.FORMERR)
            return reply

        question = _question_of(msg)
        cached = self.cache.get(question, msg.id)
        if cached is not None:
            if wants_dnssec:
                cached.flags |= dns.flags.AD
            return cached

        self.prefetch.record_access(question)

        response = self.resolver.exchange(None, msg)
        if response.has_error() or response.is_empty():
            rcode = (
                dns.rcode.NXDOMAIN
                if str(response.error) == "NXDOMAIN"
                else dns.rcode.SERVFAIL
            )
            self.cache.set_negative(question, rcode)
            reply.set_rcode(rcode)
            return reply

        answer = response.msg
        if wants_dnssec:
            # No validator is configured, so nothing is vouched for.
            answer.flags &= ~dns.flags.AD

        self.cache.set(question, answer)
        return answer

    def format_stats(self) -> str:
        """One line summarising the cache."""
        stats = self.cache.stats()
        size = self.cache.size()
        total = stats.hits + stats.misses
        hit_rate = stats.hits / total * 100 if total else 0.0
        return (
            f"Cache stats: size={size}, hits={stats.hits}, misses={stats.misses}, "
            f"hit_rate={hit_rate:.2f}%, evictions={stats.evictions}, "
            f"expired={stats.expired}, negative={stats.negative}"
        )

    def _every(self, interval: float, task: Callable[[], Any]) -> None:
        def loop() -> None:
            while not self._stopped.wait(interval):
                try:
                    task()
                except Exception:
                    logger.exception("periodic task failed")

        _spawn_thread(loop)

    def _print_stats(self) -> None:
        print(self.format_stats(), flush=True)

    def _worker(self) -> None:
        while not self._stopped.is_set():
            try:
                data, client = self._queries.get(timeout=_POLL)
            except queue.Empty:
                continue
            try:
                query = dns.message.from_wire(data)
                reply = self.process_query(query)
                if self._socket is not None:
                    self._socket.sendto(reply.to_wire(), client)
            except Exception as error:
                logger.debug("failed to answer query from %s: %s", client, error)

    def _enqueue(self, item: tuple[bytes, Any]) -> None:
        while not self._stopped.is_set():
            try:
                self._queries.put(item, timeout=_POLL)
                return
            except queue.Full:
                continue

    def start(self) -> None:
        """Serve until stop() is called; blocks the calling thread."""
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind((self.host, self.port))
            sock.settimeout(_POLL)
            self._socket = sock
            host, port = sock.getsockname()[:2]
            self.address = (host, port)
            print(f"Starting DNS server on port {port}", flush=True)

            for _ in range(self.workers):
                _spawn_thread(self._worker)
            self._every(STATS_INTERVAL, self._print_stats)
            self._every(CLEAN_INTERVAL, self.cache.clean_expired)
            self._every(PREFETCH_INTERVAL, self.prefetch.prefetch_all)
            self.ready.set()

            while not self._stopped.is_set():
                try:
                    data, client = sock.recvfrom(_MAX_DATAGRAM)
                except socket.timeout:
                    continue
                except OSError:
                    if self._stopped.is_set():
                        break
                    raise
                self._enqueue((data, client))
        finally:
            self._stopped.set()
            self._socket = None
            sock.close()

    def stop(self) -> None:
        """Ask a running server to finish."""
        self._stopped.set()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="recursor", description="Recursive, caching DNS server."
    )
    parser.add_argument("--host", default="", help="address to listen on")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS)
    parser.add_argument("--queue-size", type=int, default=DEFAULT_QUEUE_SIZE)
    parser.add_argument("--cache-size", type=int, default=DEFAULT_CACHE_SIZE)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    server = Server(
        cache=DNSCache(args.cache_size),
        workers=args.workers,
        queue_size=args.queue_size,
        host=args.host,
        port=args.port,
    )
    try:
        server.start()
    except KeyboardInterrupt:
        server.stop()
    return 0