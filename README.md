# recursor

An iterative DNS resolver with a caching UDP server in front of it.

Starting from built-in root server hints, `recursor.resolver.Resolver`
follows delegations label by label (`.` → `com.` → `example.com.` → …). It
keeps a `ZoneStore` of the zones it has found, so later queries skip the
parts of the chain that are already known. Along the way it:

- looks up nameserver addresses itself when a referral carries no glue;
- retries a nameserver over TCP when UDP fails or the reply is truncated,
  and tries a second nameserver from the pool if the first fails;
- prefers IPv6 nameservers once a background check has found that IPv6 works;
- stops after `max_queries_per_request` resolution steps (100 by default);
- notices zone cuts that a reply skipped over, by asking for their SOA.

## Installation

```
pip install .
```

Python 3.10 or later is needed. The only runtime dependency is `dnspython`.

## Running the server

```
recursor
```

This listens for DNS queries over UDP on port 5355, prints
`Starting DNS server on port 5355`, and prints a line of cache statistics
once a minute. Options:

- `--host` address to listen on (all addresses by default)
- `--port` port to listen on (5355)
- `--workers` number of worker threads (10)
- `--queue-size` queries waiting for a worker (100)
- `--cache-size` total cache entries (10000)

Try it with, for example, `dig @127.0.0.1 -p 5355 example.com A`.

The server answers from its cache when it can, and otherwise resolves the
query and caches the answer. Popular questions (asked three times) and,
once a minute, every cached question are resolved again in the background.
Expired entries are swept every 30 seconds. When resolution fails the reply
is SERVFAIL and the failure is recorded in the cache.

`recursor.server.Server` can also be used from Python: `process_query(msg)`
returns the reply for one `dns.message.Message`, `start()` serves until
`stop()` is called, and `format_stats()` returns the statistics line.

## Using the resolver from Python

```python
import dns.message

from recursor.resolver import Resolver
from recursor.trace import QueryContext

resolver = Resolver()
query = dns.message.make_query("www.example.com.", "A")

response = resolver.exchange(QueryContext(), query)
if response.has_error():
    print("lookup failed:", response.error)
else:
    print(response.msg)
```

`Resolver.exchange` accepts only queries with the recursion-desired flag set
and leaves the caller's message untouched. Passing `None` instead of a
`QueryContext` starts a fresh one. It returns a `Response` whose `msg` is the
reply, whose `error` holds any failure and whose `duration` is in seconds.
Errors derive from `recursor.errors.ResolverError`.

For positive answers the authority and additional sections are emptied by
default (`remove_authority_for_positive_answers`,
`remove_additional_for_positive_answers`), and duplicate records are merged.

## Caching

`recursor.dns_cache.DNSCache` can be used by itself:

```python
from recursor.dns_cache import DNSCache
from recursor.records import Question

cache = DNSCache()
question = Question("example.com.", 1, 1)   # A, IN
cache.set(question, response.msg)
cached = cache.get(question, 0)
print(cache.stats(), cache.size())
```

Entries live for the lowest TTL in the message, clamped between one minute
and one day (a TTL of zero becomes five minutes). The cache is split into 32
shards, each evicting its least recently used entry when full.

## Racing public resolvers

`recursor.fast_resolver.FastResolver` takes a different approach: it sends
the question to several public recursive resolvers at once (8.8.8.8, 8.8.4.4,
1.1.1.1 and 1.0.0.1 by default) and keeps the first successful reply. It
needs a cache object with `get(zone_name, question)` and
`update(zone_name, question, msg)` methods. `recursor.fast_pool.FastNameserverPool`
races a query across a list of servers and can measure their latency.

## What it does not do

- It does not validate DNSSEC. Queries with the DO bit are resolved like any
  other, and the server clears the AD flag on resolved answers.
- It does not follow CNAME chains unless a `cname_follower` is given to
  `Resolver`; by default the CNAME is returned as found.
- The server listens over UDP only, not TCP.
- Failures recorded in the cache are counted but never served back; a repeat
  of a failed question is resolved again.

## Running the tests

```
pip install .[test]
pytest
```