"""Iterative DNS resolver with zone tracking, nameserver pools, an answer cache and a UDP server."""

__version__ = "0.1.0"

__all__ = [
    "dns_cache",
    "domain",
    "errors",
    "fast_pool",
    "fast_resolver",
    "ipv6",
    "nameserver",
    "pool",
    "records",
    "resolver",
    "response",
    "root_hints",
    "server",
    "trace",
    "zone",
    "zone_factory",
    "zones",
]