import dns.flags
import dns.message
import dns.rdatatype
import pytest

from recursor.errors import NilMessageError
from recursor.nameserver import (
    DEFAULT_TIMEOUT_TCP,
    DEFAULT_TIMEOUT_UDP,
    Nameserver,
    default_client_factory,
)
from recursor.trace import QueryContext


class FakeClient:
    def __init__(self, outcome, duration=0.0):
        self.outcome = outcome
        self.duration = duration
        self.calls = []

    def exchange(self, ctx, msg, addr):
        self.calls.append((ctx, msg, addr))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome, self.duration


def make_query():
    return dns.message.make_query("example.com.", dns.rdatatype.A)


def test_valid_message():
    reply = dns.message.Message()
    client = FakeClient(reply, 0.01)
    ns = Nameserver(hostname="ns", addr="192.0.2.53", client_factory=lambda p: client)
    msg = make_query()
    ctx = QueryContext()

    response = ns.exchange(ctx, msg)

    assert response.error is None
    assert response.msg is reply
    assert response.duration == 0.01
    assert client.calls == [(ctx, msg, "192.0.2.53:53")]


def test_nil_message():
    client = FakeClient(dns.message.Message())
    ns = Nameserver(hostname="ns", addr="192.0.2.53", client_factory=lambda p: client)

    response = ns.exchange(QueryContext(), None)

    assert isinstance(response.error, NilMessageError)
    assert client.calls == []


def test_nil_message_names_zone():
    ns = Nameserver(hostname="ns", addr="192.0.2.53")
    response = ns.exchange(QueryContext().with_zone("test.zone"), None)
    assert "test.zone" in str(response.error)


def test_client_error():
    failure = RuntimeError("mock client error")
    client = FakeClient(failure)
    ns = Nameserver(hostname="ns", addr="192.0.2.53", client_factory=lambda p: client)

    response = ns.exchange(QueryContext(), make_query())

    assert response.error is failure
    assert response.is_empty()


def test_udp_error_falls_back_to_tcp():
    udp = FakeClient(RuntimeError("mock UDP error"))
    reply = dns.message.Message()
    tcp = FakeClient(reply, 0.01)
    ns = Nameserver(
        hostname="ns",
        addr="192.0.2.53",
        client_factory=lambda p: udp if p == "udp" else tcp,
    )

    response = ns.exchange(QueryContext(), make_query())

    assert response.error is None
    assert response.msg is reply
    assert response.duration == 0.01
    assert len(udp.calls) == 1
    assert len(tcp.calls) == 1


def test_truncated_response_falls_back_to_tcp():
    truncated = dns.message.Message()
    truncated.flags |= dns.flags.TC
    udp = FakeClient(truncated, 0.0)
    reply = dns.message.Message()
    tcp = FakeClient(reply, 0.01)
    ns = Nameserver(
        hostname="ns",
        addr="192.0.2.53",
        client_factory=lambda p: udp if p == "udp" else tcp,
    )

    response = ns.exchange(QueryContext(), make_query())

    assert response.error is None
    assert response.msg is reply
    assert response.duration == 0.01
    assert len(udp.calls) == 1
    assert len(tcp.calls) == 1


def test_both_udp_and_tcp_fail():
    udp_error = RuntimeError("mock UDP error")
    tcp_error = RuntimeError("mock TCP error")
    udp = FakeClient(udp_error)
    tcp = FakeClient(tcp_error)
    ns = Nameserver(
        hostname="ns",
        addr="192.0.2.53",
        client_factory=lambda p: udp if p == "udp" else tcp,
    )

    response = ns.exchange(QueryContext(), make_query())

    assert response.error is tcp_error
    assert len(udp.calls) == 1
    assert len(tcp.calls) == 1


def test_ipv6_address_formatting():
    reply = dns.message.Message()
    client = FakeClient(reply, 0.01)
    ns = Nameserver(hostname="ns", addr="2001:db8::1", client_factory=lambda p: client)

    response = ns.exchange(QueryContext(), make_query())

    assert response.msg is reply
    assert response.duration == 0.01
    assert len(client.calls) == 1
    assert client.calls[0][2] == "[2001:db8::1]:53"


def test_default_client_factory_udp():
    client = default_client_factory("udp")
    assert client.timeout == DEFAULT_TIMEOUT_UDP
    assert client.protocol == "udp"


def test_default_client_factory_tcp():
    client = default_client_factory("tcp")
    assert client.timeout == DEFAULT_TIMEOUT_TCP
    assert client.protocol == "tcp"


def test_update_metrics():
    ns = Nameserver(hostname="ns", addr="192.0.2.53")
    ns.update_metrics("udp", 0.01)
    ns.update_metrics("tcp", 0.03)

    assert ns.number_of_requests == 2
    assert ns.number_of_tcp_requests == 1
    assert ns.total_response_time == pytest.approx(0.04)
    assert ns.average_response_time == pytest.approx(0.02)
    assert ns.protocol_ratio == pytest.approx(0.5)


def test_exchange_updates_metrics():
    client = FakeClient(dns.message.Message(), 0.02)
    ns = Nameserver(hostname="ns", addr="192.0.2.53", client_factory=lambda p: client)
    ns.exchange(QueryContext(), make_query())
    assert ns.number_of_requests == 1
    assert ns.number_of_tcp_requests == 0
    assert ns.average_response_time == pytest.approx(0.02)