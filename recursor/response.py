"""The outcome of an exchange and the interface of anything that exchanges."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import dns.flags
import dns.message

if TYPE_CHECKING:
    from recursor.trace import QueryContext


@dataclass
class Response:
    """A reply message, or the error that stood in its way, and how long it took."""

    msg: dns.message.Message | None = None
    error: BaseException | None = None
    duration: float = 0.0

    def has_error(self) -> bool:
        return self.error is not None

    def is_empty(self) -> bool:
        return self.msg is None

    def truncated(self) -> bool:
        if self.msg is None:
            return False
        return bool(self.msg.flags & dns.flags.TC)


def response_error(error: BaseException) -> Response:
    """A response carrying only an error."""
    return Response(error=error)


@runtime_checkable
class Exchanger(Protocol):
    """Anything that can answer a query message."""

    def exchange(self, ctx: QueryContext, msg: dns.message.Message) -> Response:
        """Send msg and return what came back."""