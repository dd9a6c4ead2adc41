"""Exception types raised while resolving queries."""

from __future__ import annotations


class ResolverError(Exception):
    """Base class for every error raised by the resolver."""

    default_message = "resolver error"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        message = f"{self.default_message}: {detail}" if detail else self.default_message
        super().__init__(message)


class NotRecursionDesiredError(ResolverError):
    default_message = "only recursive queries are supported via this server"


class NilMessageError(ResolverError):
    default_message = "nil message sent to exchange"


class NoPoolConfiguredForZoneError(ResolverError):
    default_message = "no nameserver pool configured for zone"


class FailedToGetDNSKEYsError(ResolverError):
    default_message = "failed looking up DNSKEY records"


class FailedCreatingZoneAndPoolError(ResolverError):
    default_message = "failed creating nameserver pool for zone"


class FailedEnrichingPoolError(ResolverError):
    default_message = "failed enriching nameserver pool for zone"


class UnableToResolveAnswerError(ResolverError):
    default_message = "failed resolving answer"


class NextNameserversNotFoundError(ResolverError):
    default_message = "the onward nameservers cannot be found"


class EmptyResponseError(ResolverError):
    default_message = "the received response is empty"


class InternalError(ResolverError):
    default_message = "internal error"


class MaxQueriesPerRequestReachedError(ResolverError):
    default_message = "max queries per request reached"