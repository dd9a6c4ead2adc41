import time

import dns.flags
import dns.message
import dns.rdatatype
import dns.rrset
import pytest

from recursor.errors import (
    EmptyResponseError,
    FailedToGetDNSKEYsError,
    NoPoolConfiguredForZoneError,
    ResolverError,
)
from recursor.records import Question, is_set_do
from recursor.response import Response
from recursor.trace import QueryContext
from recursor.zone import Zone


class _FakePool:
    def __init__(self, response=None, expired=False):
        self.response = response
        self._expired = expired
        self.calls = []

    def exchange(self, ctx, msg):
        self.calls.append((ctx, msg))
        return self.response

    def expired(self):
        return self._expired


class _FakeCache:
    def __init__(self, hit=None):
        self.hit = hit
        self.lookups = []
        self.updates = []

    def get(self, zone_name, question):
        self.lookups.append((zone_name, question))
        return self.hit

    def update(self, zone_name, question, msg):
        self.updates.append((zone_name, question, msg))


def _dnskey_rrset(ttl=300):
    return dns.rrset.from_text("example.com.", ttl, "IN", "DNSKEY", "256 3 13 AQAB")


def _soa_rrset(*serials):
    return dns.rrset.from_text(
        "example.com.",
        300,
        "IN",
        "SOA",
        *(f"ns1.example.com. admin.example.com. {s} 7200 3600 1209600 300" for s in serials),
    )


def _reply(*answer):
    msg = dns.message.Message()
    msg.answer.extend(answer)
    return msg


def _query():
    return dns.message.make_query("example.com.", dns.rdatatype.A)


def test_exchange_nil_pool():
    zone = Zone("example.com.")
    response = zone.exchange(QueryContext(), _query())
    assert isinstance(response.error, NoPoolConfiguredForZoneError)
    assert "example.com." in str(response.error)


def test_exchange_with_pool():
    msg = _query()
    expected = Response(msg=msg, duration=0.01)
    pool = _FakePool(expected)
    zone = Zone("example.com.", pool=pool)

    response = zone.exchange(QueryContext(), msg)

    assert response is expected
    assert response.error is None
    assert len(pool.calls) == 1
    seen_ctx, seen_msg = pool.calls[0]
    assert seen_ctx.zone_name == "example.com."
    assert seen_msg is msg
    assert zone.calls == 1


def test_clone():
    pool = _FakePool()
    original = Zone("example.com.", pool=pool)

    cloned = original.clone("NewZone.com.", "com.")

    assert cloned.name == "newzone.com."
    assert cloned.parent == "com."
    assert cloned.pool is original.pool
    assert cloned.dnskey_records == []
    assert cloned.dnskey_expiry == 0


def test_clone_rejects_non_child():
    zone = Zone("example.com.", pool=_FakePool())
    with pytest.raises(ValueError):
        zone.clone("example.net.", "com.")
    with pytest.raises(ValueError):
        zone.clone("com.", "com.")


def test_expired_follows_pool():
    assert Zone("a.", pool=_FakePool(expired=True)).expired() is True
    assert Zone("a.", pool=_FakePool(expired=False)).expired() is False


def test_dnskeys_cached_and_valid():
    zone = Zone("example.com.")
    records = [_dnskey_rrset()]
    zone.dnskey_records = records
    zone.dnskey_expiry = time.time() + 3600

    assert zone.dnskeys(QueryContext()) == records


def test_dnskeys_expired():
    answer = [_dnskey_rrset()]
    pool = _FakePool(Response(msg=_reply(*answer)))
    zone = Zone("example.com.", pool=pool)
    zone.dnskey_expiry = time.time() - 3600

    keys = zone.dnskeys(QueryContext())

    assert keys == answer
    assert len(pool.calls) == 1
    query = pool.calls[0][1]
    assert query.question[0].rdtype == dns.rdatatype.DNSKEY
    assert is_set_do(query)
    assert not query.flags & dns.flags.RD
    assert zone.dnskey_expiry > time.time() + 200


def test_dnskeys_second_call_uses_cache():
    pool = _FakePool(Response(msg=_reply(_dnskey_rrset())))
    zone = Zone("example.com.", pool=pool)
    first = zone.dnskeys(QueryContext())
    second = zone.dnskeys(QueryContext())
    assert first == second
    assert len(pool.calls) == 1


def test_dnskeys_nil_response():
    zone = Zone("example.com.", pool=_FakePool(Response()))
    with pytest.raises(FailedToGetDNSKEYsError):
        zone.dnskeys(QueryContext())


def test_dnskeys_error_response():
    test_error = RuntimeError("test error")
    pool = _FakePool(Response(msg=_reply(_dnskey_rrset()), error=test_error))
    zone = Zone("example.com.", pool=pool)
    with pytest.raises(FailedToGetDNSKEYsError) as caught:
        zone.dnskeys(QueryContext())
    assert caught.value.__cause__ is test_error


def test_dnskeys_empty_answer():
    zone = Zone("example.com.", pool=_FakePool(Response(msg=_reply())))
    before = time.time()

    keys = zone.dnskeys(QueryContext())

    assert keys == []
    assert zone.dnskey_expiry > before
    assert zone.dnskey_expiry <= time.time() + 61


def test_soa_found():
    pool = _FakePool(Response(msg=_reply(_soa_rrset(7))))
    zone = Zone("example.com.", pool=pool)

    soa = zone.soa(QueryContext(), "example.com")

    assert soa.serial == 7
    query = pool.calls[0][1]
    assert query.question[0].name.to_text() == "example.com."
    assert query.question[0].rdtype == dns.rdatatype.SOA
    assert not query.flags & dns.flags.RD


def test_soa_absent():
    zone = Zone("example.com.", pool=_FakePool(Response(msg=_reply())))
    assert zone.soa(QueryContext(), "www.example.com.") is None


def test_soa_several_records():
    zone = Zone("example.com.", pool=_FakePool(Response(msg=_reply(_soa_rrset(1, 2)))))
    with pytest.raises(ResolverError):
        zone.soa(QueryContext(), "example.com.")


def test_soa_empty_response():
    zone = Zone("example.com.", pool=_FakePool(Response()))
    with pytest.raises(EmptyResponseError):
        zone.soa(QueryContext(), "example.com.")


def test_soa_error_response():
    error = RuntimeError("boom")
    zone = Zone("example.com.", pool=_FakePool(Response(msg=_reply(), error=error)))
    with pytest.raises(RuntimeError, match="boom"):
        zone.soa(QueryContext(), "example.com.")


def test_exchange_cache_hit_skips_pool():
    cached = _reply(_dnskey_rrset())
    pool = _FakePool(Response(msg=_reply()))
    cache = _FakeCache(hit=cached)
    zone = Zone("example.com.", pool=pool, cache=cache)

    response = zone.exchange(QueryContext(), _query())

    assert response.msg == cached
    assert response.msg is not cached
    assert pool.calls == []
    assert cache.lookups == [("example.com.", Question("example.com.", 1, 1))]


def test_exchange_cache_updated_without_opt():
    reply = _reply(_dnskey_rrset())
    reply.use_edns(0)
    pool = _FakePool(Response(msg=reply))
    cache = _FakeCache()
    zone = Zone("example.com.", pool=pool, cache=cache)

    response = zone.exchange(QueryContext(), _query())

    assert response.msg is reply
    assert len(cache.updates) == 1
    zone_name, question, stored = cache.updates[0]
    assert zone_name == "example.com."
    assert question == Question("example.com.", 1, 1)
    assert stored.edns == -1
    assert stored.answer == reply.answer
    assert reply.edns == 0


def test_clone_shares_cache():
    cache = _FakeCache()
    zone = Zone("example.com.", pool=_FakePool(), cache=cache)
    assert zone.clone("a.example.com.", "example.com.").cache is cache