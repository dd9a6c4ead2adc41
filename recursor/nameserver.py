"""A single upstream nameserver, queried over UDP with a TCP fallback."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import dns.message
import dns.query

from recursor.errors import NilMessageError
from recursor.records import type_to_string
from recursor.response import Response, response_error
from recursor.trace import QueryContext

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_UDP = 0.5
DEFAULT_TIMEOUT_TCP = 2.0
DNS_PORT = 53


class DnsClient(Protocol):
    """Sends one message to one address over one transport."""

    def exchange(
        self, ctx: QueryContext, msg: dns.message.Message, addr: str
    ) -> tuple[dns.message.Message, float]:
        """Return the reply and the round-trip time in seconds; raise on failure."""


def _join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _split_host_port(addr: str) -> tuple[str, int]:
    host, _, port = addr.rpartition(":")
    return host.strip("[]"), int(port)


class _QueryClient:
    """Client backed by dnspython's query functions."""

    def __init__(self, protocol: str, timeout: float) -> None:
        self.protocol = protocol
        self.timeout = timeout

    def exchange(
        self, ctx: QueryContext, msg: dns.message.Message, addr: str
    ) -> tuple[dns.message.Message, float]:
        host, port = _split_host_port(addr)
        started = time.monotonic()
        if self.protocol == "tcp":
            reply = dns.query.tcp(msg, host, timeout=self.timeout, port=port)
        else:
            reply = dns.query.udp(msg, host, timeout=self.timeout, port=port)
        return reply, time.monotonic() - started


def default_client_factory(protocol: str) -> _QueryClient:
    """A client for the protocol with the matching default timeout."""
    timeout = DEFAULT_TIMEOUT_TCP if protocol == "tcp" else DEFAULT_TIMEOUT_UDP
    return _QueryClient(protocol, timeout)


@dataclass(eq=False)
class Nameserver:
    """One nameserver address, with running response metrics."""

    hostname: str
    addr: str
    client_factory: Callable[[str], DnsClient] | None = None
    number_of_requests: int = field(default=0, init=False)
    total_response_time: float = field(default=0.0, init=False)
    average_response_time: float = field(default=0.0, init=False)
    number_of_tcp_requests: int = field(default=0, init=False)
    protocol_ratio: float = field(default=0.0, init=False)
    _metrics_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )

    def exchange(self, ctx: QueryContext, msg: dns.message.Message | None) -> Response:
        """Query over UDP, then over TCP if UDP failed or the reply was truncated."""
        factory = self.client_factory or default_client_factory
        zone_name = ctx.zone_name if ctx.zone_name is not None else "unknown"

        if msg is None:
            return response_error(NilMessageError(f"in zone [{zone_name}]"))

        addr = _join_host_port(self.addr, DNS_PORT)
        response = Response()
        for protocol in ("udp", "tcp"):
            client = factory(protocol)
            try:
                reply, duration = client.exchange(ctx, msg, addr)
                response = Response(msg=reply, duration=duration)
            except Exception as error:  # any transport failure means try again
                response = Response(error=error)

            if msg.question:
                qname = msg.question[0].name.to_text()
                qtype = type_to_string(msg.question[0].rdtype)
            else:
                qname, qtype = "", "unknown"
            logger.debug(
                "%s-%d: %ss taken querying [%s] %s in zone [%s] on %s://%s (%s)",
                ctx.trace.short_id(),
                ctx.trace.iteration(),
                response.duration,
                qname,
                qtype,
                zone_name,
                protocol,
                self.hostname,
                addr,
            )

            self.update_metrics(protocol, response.duration)

            if response.has_error():
                continue
            if not response.truncated():
                return response

        # Possibly an error, possibly truncated: the best that was obtained.
        return response

    def update_metrics(self, protocol: str, duration: float) -> None:
        """Record one request made over protocol that took duration seconds."""
        with self._metrics_lock:
            self.number_of_requests += 1
            self.total_response_time += duration
            self.average_response_time = self.total_response_time / self.number_of_requests
            if protocol == "tcp":
                self.number_of_tcp_requests += 1
            self.protocol_ratio = self.number_of_tcp_requests / self.number_of_requests