import dns.flags
import dns.message

from recursor.errors import EmptyResponseError
from recursor.response import Response, response_error


def test_empty_response():
    r = Response()
    assert r.is_empty()
    assert not r.has_error()
    assert not r.truncated()
    assert r.duration == 0


def test_response_error():
    err = EmptyResponseError()
    r = response_error(err)
    assert r.has_error()
    assert r.is_empty()
    assert r.error is err


def test_message_response():
    msg = dns.message.make_query("example.com.", "A")
    r = Response(msg=msg, duration=0.01)
    assert not r.is_empty()
    assert not r.has_error()
    assert not r.truncated()
    assert r.duration == 0.01


def test_truncated():
    msg = dns.message.make_query("example.com.", "A")
    msg.flags |= dns.flags.TC
    assert Response(msg=msg).truncated()