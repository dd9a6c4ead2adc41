"""Walking a query name's labels from the root towards the full name."""

from __future__ import annotations

from recursor.records import canonical_name, count_labels, is_subdomain, label_indexes


class Domain:
    """A name whose suffixes are visited shortest first, ending with the full name."""

    def __init__(self, name: str) -> None:
        self.name = canonical_name(name)
        self.label_indexes = tuple(
            reversed([*label_indexes(self.name), len(self.name) - 1])
        )
        self._position = 0

    def wind_to(self, target: str) -> None:
        """Advance until the current suffix equals target."""
        target = canonical_name(target)
        if not is_subdomain(target, self.name):
            raise ValueError(f"{target} is not a subdomain of {self.name}")
        while self.more():
            if self.current() == target:
                return
            self.next()
        raise LookupError(f"{target} not found")

    def current(self) -> str:
        """The suffix at the current position; the full name once past the end."""
        if self._position >= len(self.label_indexes):
            return self.name
        return self.name[self.label_indexes[self._position]:]

    def next(self) -> None:
        self._position += 1

    def more(self) -> bool:
        # The full name is visited twice: once to find the zone's
        # nameservers when it is a zone apex, once for the answer itself.
        return self._position <= len(self.label_indexes)

    def last(self) -> bool:
        return self._position >= len(self.label_indexes) - 1

    def gap(self, target: str) -> list[str]:
        """Suffixes from the current position up to, not including, target."""
        if not is_subdomain(target, self.name):
            return []
        missing = count_labels(target) - count_labels(self.current())
        if missing <= 0:
            return []
        return [
            self.name[index:]
            for index in self.label_indexes[self._position:self._position + missing]
        ]