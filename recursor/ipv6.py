"""Detection of working IPv6 connectivity."""

from __future__ import annotations

import threading

import dns.exception
import dns.message
import dns.query
import dns.rdatatype

# k.root-servers.net, e.root-servers.net, a.root-servers.net
_PROBE_ADDRESSES = ("2001:7fd::1", "2001:500:a8::e", "2001:503:ba3e::2:30")
_PROBE_TIMEOUT = 0.5


class _State:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.answered = False
        self.available = False
        self.check_started = False


_state = _State()


def ipv6_available() -> bool:
    """Whether IPv6 works; never blocks, and reports False until a check has answered."""
    with _state.lock:
        if _state.answered or _state.available:
            return _state.available
        start_check = not _state.check_started
        _state.check_started = True
    if start_check:
        threading.Thread(target=update_ipv6_availability, daemon=True).start()
    return False


def update_ipv6_availability() -> bool:
    """Query root servers over IPv6 and record whether any of them answered."""
    query = dns.message.make_query(".", dns.rdatatype.NS)
    available = False
    try:
        for address in _PROBE_ADDRESSES:
            try:
                dns.query.udp(query, address, timeout=_PROBE_TIMEOUT, port=53)
            except (OSError, dns.exception.DNSException):
                continue
            available = True
            break
    finally:
        with _state.lock:
            _state.available = available
            _state.answered = True
    return available


def set_ipv6_availability(available: bool) -> None:
    """Record the IPv6 state directly, skipping the network check."""
    with _state.lock:
        _state.available = available
        _state.answered = True
        _state.check_started = True