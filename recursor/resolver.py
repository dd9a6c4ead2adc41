"""Iterative resolution of a query, walking delegations down from the root."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable
from typing import Any, Protocol

import dns.flags
import dns.message
import dns.rcode
import dns.rdatatype
import dns.rrset

from recursor.domain import Domain
from recursor.errors import (
    EmptyResponseError,
    InternalError,
    MaxQueriesPerRequestReachedError,
    NextNameserversNotFoundError,
    NotRecursionDesiredError,
    ResolverError,
    UnableToResolveAnswerError,
)
from recursor.nameserver import Nameserver
from recursor.pool import NameserverPool
from recursor.records import (
    canonical_name,
    count_labels,
    extract_records_of_type,
    is_subdomain,
    rcode_to_string,
    records_of_type_exist,
)
from recursor.response import Response, response_error
from recursor.root_hints import root_addresses
from recursor.trace import QueryContext
from recursor.zone import Zone
from recursor.zone_factory import create_zone
from recursor.zones import ZoneStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUERIES_PER_REQUEST = 100


class _ResolvableZone(Protocol):
    name: str
    parent: str

    def expired(self) -> bool: ...

    def exchange(self, ctx: QueryContext, msg: dns.message.Message) -> Response | None: ...

    def soa(self, ctx: QueryContext, name: str) -> Any | None: ...

    def clone(self, name: str, parent: str) -> _ResolvableZone: ...


ZoneFactory = Callable[..., _ResolvableZone]
# Called as follower(ctx, qmsg, response, exchanger, cache); adds the records
# found by following a CNAME to response.msg and raises on failure.
CnameFollower = Callable[
    [QueryContext, dns.message.Message, Response, Any, Any], None
]


def build_root_server_pool() -> NameserverPool:
    """A pool holding every root server address; it never expires."""
    ipv4: list[Nameserver] = []
    ipv6: list[Nameserver] = []
    for hostname, address in root_addresses():
        server = Nameserver(hostname=hostname, addr=str(address))
        (ipv4 if address.version == 4 else ipv6).append(server)
    return NameserverPool(ipv4=ipv4, ipv6=ipv6)


def _dedup(rrsets: Iterable[dns.rrset.RRset]) -> list[dns.rrset.RRset]:
    """Merge rrsets that share owner, class and type, keeping first appearance."""
    merged: dict[tuple[Any, int, int, int], dns.rrset.RRset] = {}
    result: list[dns.rrset.RRset] = []
    for rrset in rrsets:
        key = (rrset.name, rrset.rdclass, rrset.rdtype, rrset.covers)
        existing = merged.get(key)
        if existing is None:
            first = copy.copy(rrset)
            merged[key] = first
            result.append(first)
            continue
        for rdata in rrset:
            existing.add(rdata, existing.ttl)
    return result


class Resolver:
    """A recursive resolver that starts at the root and follows referrals."""

    def __init__(
        self,
        cache: Any = None,
        *,
        zones: ZoneStore | None = None,
        zone_factory: ZoneFactory = create_zone,
        cname_follower: CnameFollower | None = None,
        max_queries_per_request: int = DEFAULT_MAX_QUERIES_PER_REQUEST,
        remove_authority_for_positive_answers: bool = True,
        remove_additional_for_positive_answers: bool = True,
    ) -> None:
        if zones is None:
            zones = ZoneStore()
            zones.add(Zone(".", "", pool=build_root_server_pool()))
        self.zones = zones
        self.cache = cache
        self.zone_factory = zone_factory
        self.cname_follower = cname_follower
        self.max_queries_per_request = max_queries_per_request
        self.remove_authority_for_positive_answers = remove_authority_for_positive_answers
        self.remove_additional_for_positive_answers = remove_additional_for_positive_answers

    def count_zones(self) -> int:
        return self.zones.count()

    def exchange(
        self, ctx: QueryContext | None, msg: dns.message.Message
    ) -> Response:
        """Resolve a recursive query; the caller's message is left untouched."""
        if not msg.flags & dns.flags.RD:
            return response_error(NotRecursionDesiredError())

        response = self._resolve(ctx, copy.deepcopy(msg))
        if not response.is_empty():
            response.msg.flags |= dns.flags.RA
        return response

    def _resolve(
        self, ctx: QueryContext | None, qmsg: dns.message.Message
    ) -> Response:
        if ctx is None:
            ctx = QueryContext()
            logger.debug("New query started with Trace ID: %s", ctx.trace.short_id())
        ctx.trace.increment()

        if not qmsg.question:
            return response_error(InternalError("the query holds no question"))
        qname = qmsg.question[0].name.to_text()

        # Known zones along the name, most specific first, ending at the root.
        known_zones = self.zones.get_zone_list(qname)
        if not known_zones:
            return response_error(InternalError(f"no known zones for [{qname}]"))

        domain = Domain(qname)
        try:
            domain.wind_to(known_zones[0].name)
        except (ValueError, LookupError) as error:
            return response_error(error)

        zone: _ResolvableZone | None = known_zones[0]
        while domain.more():
            if ctx.next_query() > self.max_queries_per_request:
                return response_error(
                    MaxQueriesPerRequestReachedError(
                        f"value is currently set to: {self.max_queries_per_request}"
                    )
                )

            known = self.zones.get(domain.current())
            if known is not None and not domain.last():
                # A known zone needs no resolving, unless this is the query name.
                zone = known
            else:
                zone, response = self.resolve_label(ctx, domain, zone, qmsg)
                if response is not None:
                    logger.debug(
                        "counter at end of exchange for iteration %d is %d",
                        ctx.trace.iteration(),
                        ctx.queries,
                    )
                    return response
            domain.next()

        return response_error(UnableToResolveAnswerError())

    def resolve_label(
        self,
        ctx: QueryContext,
        domain: Domain,
        zone: _ResolvableZone | None,
        qmsg: dns.message.Message,
    ) -> tuple[_ResolvableZone | None, Response | None]:
        """Ask zone the query; return the next zone on a referral, else the response."""
        if zone is None:
            return None, response_error(InternalError("zone cannot be nil"))

        response = zone.exchange(ctx, qmsg)
        if response is not None and response.has_error():
            return None, response
        if response is None or response.is_empty():
            return None, response_error(
                EmptyResponseError("without an error. mysterious")
            )

        zone = self.check_for_missing_zones(ctx, domain, zone, response.msg)

        msg = response.msg
        if (
            not msg.answer
            and records_of_type_exist(msg.authority, dns.rdatatype.NS)
            and not records_of_type_exist(msg.authority, dns.rdatatype.SOA)
        ):
            return self.process_delegation(ctx, zone, msg)

        return None, self.finalise_response(ctx, qmsg, response)

    def check_for_missing_zones(
        self,
        ctx: QueryContext,
        domain: Domain,
        zone: _ResolvableZone,
        rmsg: dns.message.Message,
    ) -> _ResolvableZone:
        """Find zones skipped over by a reply, add them, and return the deepest."""
        records = [*rmsg.authority, *rmsg.answer]
        if not records:
            return zone

        # Best effort: the owner below the current zone with the most labels.
        next_owner = "."
        for rrset in records:
            option = canonical_name(rrset.name.to_text())
            if (
                option != next_owner
                and is_subdomain(zone.name, option)
                and count_labels(option) > count_labels(next_owner)
            ):
                next_owner = option

        if next_owner == ".":
            return zone

        for missing in domain.gap(next_owner):
            try:
                soa = zone.soa(ctx, missing)
            except Exception as error:
                logger.debug("SOA lookup for [%s] failed: %s", missing, error)
                soa = None

            # A SOA means the name is the apex of a zone of its own.
            if soa is not None:
                new_zone = zone.clone(missing, zone.name)
                self.zones.add(new_zone)
                zone = new_zone

            domain.next()

        return zone

    def process_delegation(
        self, ctx: QueryContext, zone: _ResolvableZone, rmsg: dns.message.Message
    ) -> tuple[_ResolvableZone | None, Response | None]:
        """Create and store the zone a referral points to."""
        nameservers = extract_records_of_type(rmsg.authority, dns.rdatatype.NS)
        if not nameservers:
            return None, response_error(
                NextNameserversNotFoundError(
                    f"in the response from zone [{zone.name}]"
                )
            )

        next_zone_name = canonical_name(nameservers[0].name.to_text())
        current = canonical_name(zone.name)
        if next_zone_name == current or not is_subdomain(current, next_zone_name):
            return None, response_error(
                NextNameserversNotFoundError(
                    f"unexpected zone [{next_zone_name}] after [{zone.name}]"
                )
            )

        try:
            new_zone = self.zone_factory(
                ctx, next_zone_name, zone.name, nameservers, list(rmsg.additional), self
            )
        except Exception as error:
            return None, response_error(error)

        self.zones.add(new_zone)
        return new_zone, None

    def finalise_response(
        self, ctx: QueryContext, qmsg: dns.message.Message, response: Response
    ) -> Response:
        """Follow CNAMEs, check the response code and tidy the sections."""
        qtype = qmsg.question[0].rdtype
        if (
            self.cname_follower is not None
            and qtype != dns.rdatatype.CNAME
            and records_of_type_exist(response.msg.answer, dns.rdatatype.CNAME)
        ):
            try:
                self.cname_follower(ctx, qmsg, response, self, self.cache)
            except Exception as error:
                return response_error(error)

        msg = response.msg
        rcode = msg.rcode()
        if rcode not in (dns.rcode.NOERROR, dns.rcode.NXDOMAIN):
            response.error = ResolverError(
                f"unsuccessful response code {rcode_to_string(int(rcode))} ({int(rcode)})"
            )

        positive = bool(msg.answer) and not records_of_type_exist(
            msg.authority, dns.rdatatype.SOA
        )
        if positive and self.remove_authority_for_positive_answers:
            msg.authority = []
        if positive and self.remove_additional_for_positive_answers:
            # EDNS lives outside the additional list, so it is kept.
            msg.additional = []

        msg.answer = _dedup(msg.answer)
        msg.authority = _dedup(msg.authority)
        msg.additional = _dedup(msg.additional)

        response.duration = ctx.elapsed
        return response