"""Addresses of the root name servers used to start resolution."""

from __future__ import annotations

import ipaddress

from recursor.records import canonical_name

# The b root server is left out on purpose: it answers too slowly.
_ROOT_SERVERS = (
    ("A.ROOT-SERVERS.NET.", "198.41.0.4", "2001:503:ba3e::2:30"),
    ("C.ROOT-SERVERS.NET.", "192.33.4.12", "2001:500:2::c"),
    ("D.ROOT-SERVERS.NET.", "199.7.91.13", "2001:500:2d::d"),
    ("E.ROOT-SERVERS.NET.", "192.203.230.10", "2001:500:a8::e"),
    ("F.ROOT-SERVERS.NET.", "192.5.5.241", "2001:500:2f::f"),
    ("G.ROOT-SERVERS.NET.", "192.112.36.4", "2001:500:12::d0d"),
    ("H.ROOT-SERVERS.NET.", "198.97.190.53", "2001:500:1::53"),
    ("I.ROOT-SERVERS.NET.", "192.36.148.17", "2001:7fe::53"),
    ("J.ROOT-SERVERS.NET.", "192.58.128.30", "2001:503:c27::2:30"),
    ("K.ROOT-SERVERS.NET.", "193.0.14.129", "2001:7fd::1"),
    ("L.ROOT-SERVERS.NET.", "199.7.83.42", "2001:500:9f::42"),
    ("M.ROOT-SERVERS.NET.", "202.12.27.33", "2001:dc3::35"),
)


def root_addresses() -> list[tuple[str, ipaddress.IPv4Address | ipaddress.IPv6Address]]:
    """Canonical host name and address of every root server, IPv4 before IPv6 per host."""
    return [
        (canonical_name(host), ipaddress.ip_address(address))
        for host, ipv4, ipv6 in _ROOT_SERVERS
        for address in (ipv4, ipv6)
    ]