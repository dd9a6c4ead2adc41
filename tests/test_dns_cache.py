import dns.message
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from recursor.dns_cache import DNSCache
from recursor.records import Question


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_answer(name: str = "example.com.", ttl: int = 300) -> dns.message.Message:
    query = dns.message.make_query(name, dns.rdatatype.A)
    msg = dns.message.make_response(query)
    msg.answer.append(dns.rrset.from_text(name, ttl, "IN", "A", "192.0.2.1"))
    return msg


def question(name: str = "example.com.") -> Question:
    return Question(name, dns.rdatatype.A, dns.rdataclass.IN)


def test_set_and_get_survives_one_second():
    clock = FakeClock()
    cache = DNSCache(clock=clock)
    q = question()
    cache.set(q, make_answer())

    cached = cache.get(q, 0)
    assert cached is not None
    assert len(cached.answer) == 1

    clock.now += 1
    cached = cache.get(q, 0)
    assert cached is not None


def test_get_sets_request_id_and_counts_hit():
    cache = DNSCache(clock=FakeClock())
    q = question()
    cache.set(q, make_answer())
    cached = cache.get(q, 4242)
    assert cached.id == 4242
    assert cache.stats().hits == 1
    assert cache.stats().misses == 0


def test_miss_is_counted():
    cache = DNSCache(clock=FakeClock())
    assert cache.get(question(), 0) is None
    assert cache.stats().misses == 1


def test_stored_and_returned_messages_are_copies():
    cache = DNSCache(clock=FakeClock())
    q = question()
    original = make_answer()
    cache.set(q, original)
    original.answer.clear()

    first = cache.get(q, 0)
    assert len(first.answer) == 1
    first.answer.clear()
    assert len(cache.get(q, 0).answer) == 1


def test_expired_entry_is_evicted_on_get():
    clock = FakeClock()
    cache = DNSCache(clock=clock)
    q = question()
    cache.set(q, make_answer(ttl=300))
    clock.now += 301
    assert cache.get(q, 0) is None
    stats = cache.stats()
    assert stats.expired == 1
    assert stats.evictions == 1
    assert stats.misses == 1
    assert cache.size() == 0


def test_short_ttl_is_raised_to_one_minute():
    clock = FakeClock()
    cache = DNSCache(clock=clock)
    q = question()
    cache.set(q, make_answer(ttl=10))
    clock.now += 59
    assert cache.get(q, 0) is not None
    clock.now += 2
    assert cache.get(q, 0) is None


def test_zero_ttl_becomes_five_minutes():
    clock = FakeClock()
    cache = DNSCache(clock=clock)
    q = question()
    cache.set(q, make_answer(ttl=0))
    clock.now += 299
    assert cache.get(q, 0) is not None
    clock.now += 2
    assert cache.get(q, 0) is None


def test_long_ttl_is_capped_at_one_day():
    clock = FakeClock()
    cache = DNSCache(clock=clock)
    q = question()
    cache.set(q, make_answer(ttl=200000))
    clock.now += 86399
    assert cache.get(q, 0) is not None
    clock.now += 2
    assert cache.get(q, 0) is None


def test_message_without_records_gets_default_hour():
    clock = FakeClock()
    cache = DNSCache(clock=clock)
    q = question()
    cache.set(q, dns.message.make_response(dns.message.make_query("example.com.", "A")))
    clock.now += 3599
    assert cache.get(q, 0) is not None
    clock.now += 2
    assert cache.get(q, 0) is None


def test_capacity_is_bounded_per_shard():
    cache = DNSCache(max_size=32, clock=FakeClock())
    for index in range(100):
        name = f"host{index}.example."
        cache.set(question(name), make_answer(name))
    size = cache.size()
    assert 0 < size <= 32
    assert cache.stats().evictions == 100 - size


def test_replacing_an_entry_keeps_size():
    cache = DNSCache(clock=FakeClock())
    q = question()
    cache.set(q, make_answer(ttl=300))
    cache.set(q, make_answer(ttl=600))
    assert cache.size() == 1


def test_negative_entry_is_stored_but_not_returned_by_get():
    cache = DNSCache(clock=FakeClock())
    q = question()
    cache.set_negative(q, dns.rcode.NXDOMAIN)
    assert cache.size() == 1
    assert cache.stats().negative == 1
    assert cache.get(q, 0) is None


def test_all_questions_lists_live_positive_entries():
    clock = FakeClock()
    cache = DNSCache(clock=clock)
    plain = question("example.com.")
    hyphenated = question("a-b.example.")
    cache.set(plain, make_answer("example.com."))
    cache.set(hyphenated, make_answer("a-b.example."))
    cache.set_negative(question("missing.example."), dns.rcode.NXDOMAIN)

    assert cache.all_questions() == [plain]

    clock.now += 86401
    assert cache.all_questions() == []


def test_clean_expired_removes_old_entries():
    clock = FakeClock()
    cache = DNSCache(clock=clock)
    cache.set(question("one.example."), make_answer("one.example."))
    cache.set(question("two.example."), make_answer("two.example."))
    cache.clean_expired()
    assert cache.size() == 2

    clock.now += 400
    cache.clean_expired()
    assert cache.size() == 0
    assert cache.stats().expired == 2
    assert cache.stats().evictions == 0


def test_clear_empties_but_keeps_stats():
    cache = DNSCache(clock=FakeClock())
    q = question()
    cache.set(q, make_answer())
    cache.get(q, 0)
    cache.clear()
    assert cache.size() == 0
    assert cache.get(q, 0) is None
    assert cache.stats().hits == 1