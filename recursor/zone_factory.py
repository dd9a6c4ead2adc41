"""Creating zones from delegations, resolving nameserver addresses as needed."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

import dns.message
import dns.rdatatype
import dns.rrset

from recursor.errors import FailedCreatingZoneAndPoolError, FailedEnrichingPoolError
from recursor.ipv6 import ipv6_available
from recursor.pool import DESIRED_NAMESERVERS_PER_ZONE, NameserverPool, PoolStatus
from recursor.records import canonical_name, is_subdomain
from recursor.response import Exchanger
from recursor.trace import QueryContext
from recursor.zone import Zone

logger = logging.getLogger(__name__)

# When true, pools that work but could use more addresses are not enriched.
LAZY_ENRICHMENT = False
ENRICHMENT_TIMEOUT = 3.0


def create_zone(
    ctx: QueryContext,
    name: str,
    parent: str,
    nameservers: Iterable[dns.rrset.RRset],
    extra: Iterable[dns.rrset.RRset],
    exchanger: Exchanger,
) -> Zone:
    """A zone for name below parent, served by the given nameservers."""
    name = canonical_name(name)
    parent = canonical_name(parent)

    if name == parent or not is_subdomain(parent, name):
        raise FailedCreatingZoneAndPoolError(
            f"the new zone name [{name}] must be a subdomain of the parent [{parent}]"
        )

    pool = NameserverPool.from_records(nameservers, extra)
    status = pool.status()

    if status == PoolStatus.PRIMED_BUT_NEEDS_ENHANCING:
        if not LAZY_ENRICHMENT:
            threading.Thread(
                target=_enrich_in_background,
                args=(ctx, name, pool, exchanger),
                daemon=True,
            ).start()
    elif status == PoolStatus.HAS_HOSTNAMES_BUT_NO_IP_ADDRESSES:
        enrich_pool(ctx, name, pool, exchanger)
    elif status != PoolStatus.PRIMED:
        raise FailedCreatingZoneAndPoolError(
            f"for [{name}]: the nameserver pool is empty and we have no hostnames to enrich"
        )

    logger.debug("new zone created [%s]", name)
    return Zone(name, parent, pool=pool)


def _enrich_in_background(
    ctx: QueryContext, zone_name: str, pool: NameserverPool, exchanger: Exchanger
) -> None:
    try:
        enrich_pool(ctx, zone_name, pool, exchanger)
    except FailedEnrichingPoolError as error:
        logger.debug("background enrichment failed: %s", error)


def enrich_pool(
    ctx: QueryContext, zone_name: str, pool: NameserverPool, exchanger: Exchanger
) -> None:
    """Look up addresses of the pool's unresolved nameserver hosts.

    Returns once the first answer has been applied; remaining lookups carry
    on in the background.
    """
    if not pool.hosts_without_addresses:
        raise FailedEnrichingPoolError(
            f"[{zone_name}]: the nameserver pool is empty so we have no hostnames to enrich"
        )

    hosts = list(pool.hosts_without_addresses[:DESIRED_NAMESERVERS_PER_ZONE])
    rdtypes = [dns.rdatatype.A]
    if ipv6_available():
        rdtypes.append(dns.rdatatype.AAAA)

    # Set on the first successful enrichment, or when every lookup is done.
    signal = threading.Event()

    def work() -> None:
        try:
            for rdtype in rdtypes:
                for host in hosts:
                    query = dns.message.make_query(canonical_name(host), rdtype)
                    try:
                        response = exchanger.exchange(ctx, query)
                    except Exception as error:
                        logger.debug("enrichment lookup of %s failed: %s", host, error)
                        continue
                    if (
                        response is not None
                        and not response.has_error()
                        and not response.is_empty()
                        and response.msg.answer
                    ):
                        pool.enrich(response.msg.answer)
                        signal.set()
        finally:
            signal.set()

    threading.Thread(target=work, daemon=True).start()

    if not signal.wait(ENRICHMENT_TIMEOUT):
        raise FailedEnrichingPoolError(f"[{zone_name}]: enrichment timeout")

    if pool.status() not in (PoolStatus.PRIMED, PoolStatus.PRIMED_BUT_NEEDS_ENHANCING):
        raise FailedEnrichingPoolError(
            f"[{zone_name}]: the nameserver pool still not primed after enrichment"
        )

    logger.debug("zone pool enriched for [%s]", zone_name)