"""A DNS zone: its name, its parent and the nameservers that answer for it."""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Protocol

import dns.flags
import dns.message
import dns.rdatatype
import dns.rrset

from recursor.errors import (
    EmptyResponseError,
    FailedToGetDNSKEYsError,
    NoPoolConfiguredForZoneError,
    ResolverError,
)
from recursor.pool import MAX_ALLOWED_TTL
from recursor.records import (
    Question,
    canonical_name,
    extract_records_of_type,
    is_subdomain,
    records_of_type_exist,
    type_to_string,
)
from recursor.response import Response, response_error
from recursor.trace import QueryContext

logger = logging.getLogger(__name__)

_EMPTY_DNSKEY_CACHE_SECONDS = 60


class _ExpiringExchanger(Protocol):
    def exchange(self, ctx: QueryContext, msg: dns.message.Message) -> Response: ...

    def expired(self) -> bool: ...


class _Cache(Protocol):
    def get(self, zone_name: str, question: Question) -> dns.message.Message | None: ...

    def update(
        self, zone_name: str, question: Question, msg: dns.message.Message
    ) -> None: ...


def _question_of(msg: dns.message.Message) -> Question:
    question = msg.question[0]
    return Question(
        name=question.name.to_text(),
        qtype=int(question.rdtype),
        qclass=int(question.rdclass),
    )


def _copy_message(msg: dns.message.Message) -> dns.message.Message:
    return copy.deepcopy(msg)


class Zone:
    """A zone that forwards queries to its nameserver pool, with optional caching."""

    def __init__(
        self,
        name: str,
        parent: str = "",
        pool: _ExpiringExchanger | None = None,
        cache: _Cache | Any | None = None,
    ) -> None:
        self.name = name
        self.parent = parent
        self.pool = pool
        self.cache = cache
        self.calls = 0
        self.dnskey_records: list[dns.rrset.RRset] = []
        # Unix seconds; zero means the keys were never fetched.
        self.dnskey_expiry = 0.0
        self._calls_lock = threading.Lock()
        self._dnskey_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Zone(name={self.name!r}, parent={self.parent!r})"

    def expired(self) -> bool:
        return self.pool is not None and self.pool.expired()

    def clone(self, name: str, parent: str) -> Zone:
        """A new zone below parent that shares this zone's nameservers."""
        if canonical_name(name) == canonical_name(parent) or not is_subdomain(
            parent, name
        ):
            raise ValueError(f"child {name} is not actually a child of parent: {parent}")
        return Zone(
            canonical_name(name),
            canonical_name(parent),
            pool=self.pool,
            cache=self.cache,
        )

    def exchange(self, ctx: QueryContext, msg: dns.message.Message) -> Response:
        """Answer msg from the cache if possible, otherwise from the pool."""
        with self._calls_lock:
            self.calls += 1

        if self.cache is not None and msg.question:
            question = _question_of(msg)
            try:
                cached = self.cache.get(self.name, question)
            except Exception as error:
                logger.warning(
                    "error trying to perform a cache lookup for zone [%s]: %s",
                    self.name,
                    error,
                )
            else:
                if cached is not None:
                    logger.debug(
                        "%s-%d: response for [%s] %s in zone [%s] found in cache",
                        ctx.trace.short_id(),
                        ctx.trace.iteration(),
                        question.name,
                        type_to_string(question.qtype),
                        self.name,
                    )
                    return Response(msg=_copy_message(cached))

        if self.pool is None:
            return response_error(NoPoolConfiguredForZoneError(f"[{self.name}]"))

        response = self.pool.exchange(ctx.with_zone(self.name), msg)

        if (
            self.cache is not None
            and msg.question
            and response is not None
            and not response.is_empty()
            and not response.has_error()
        ):
            stored = _copy_message(response.msg)
            # OPT records are never cached.
            stored.use_edns(False)
            try:
                self.cache.update(self.name, _question_of(msg), stored)
            except Exception as error:
                logger.warning(
                    "error trying to perform a cache update for zone [%s]: %s",
                    self.name,
                    error,
                )

        return response

    def soa(self, ctx: QueryContext, name: str) -> Any | None:
        """The SOA record at name, or None if name is not the apex of a zone."""
        query = dns.message.make_query(canonical_name(name), dns.rdatatype.SOA)
        query.flags &= ~dns.flags.RD
        response = self.exchange(ctx, query)

        if response is None or response.is_empty():
            raise EmptyResponseError()
        if response.has_error():
            raise response.error
        if not records_of_type_exist(response.msg.answer, dns.rdatatype.SOA):
            return None

        soas = [
            rdata
            for rrset in extract_records_of_type(response.msg.answer, dns.rdatatype.SOA)
            for rdata in rrset
        ]
        if len(soas) != 1:
            raise ResolverError(
                "we expect only a single SOA for a given name / zone. "
                f"we got {len(soas)}"
            )
        return soas[0]

    def dnskeys(self, ctx: QueryContext) -> list[dns.rrset.RRset]:
        """The zone's DNSKEY records, fetched once and kept for their TTL."""
        with self._dnskey_lock:
            if self.dnskey_expiry and self.dnskey_expiry >= time.time():
                return self.dnskey_records

            query = dns.message.make_query(
                canonical_name(self.name),
                dns.rdatatype.DNSKEY,
                use_edns=0,
                want_dnssec=True,
                payload=4096,
            )
            query.flags &= ~dns.flags.RD
            response = self.exchange(ctx, query)

            if response is not None and response.has_error():
                error = FailedToGetDNSKEYsError(f"for {self.name}: {response.error}")
                raise error from response.error
            if response is None or response.is_empty():
                raise FailedToGetDNSKEYsError(f"for {self.name}: reponse is empty")

            if not response.msg.answer:
                # No answer gets a short cache rather than the longest allowed.
                self.dnskey_expiry = time.time() + _EMPTY_DNSKEY_CACHE_SECONDS
                return []

            self.dnskey_records = list(response.msg.answer)
            ttl = min(
                [MAX_ALLOWED_TTL, *(rrset.ttl for rrset in self.dnskey_records)]
            )
            self.dnskey_expiry = time.time() + ttl
            return self.dnskey_records