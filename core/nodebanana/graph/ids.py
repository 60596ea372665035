"""Monotonic ``<prefix>-<n>`` id generation."""

import re
from collections.abc import Iterable

_SUFFIX = re.compile(r"-(\d+)$")


class IdGenerator:
    """
    One counter shared by every prefix handed to it.

    Node ids draw from a single counter across all node types, so
    ``imageInput-1`` followed by ``prompt-2`` is the expected sequence.
    """

    def __init__(self, start: int = 0):
        self._counter = start

    @property
    def current(self) -> int:
        return self._counter

    def next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def reseed(self, ids: Iterable[str]) -> int:
        """Advance past the largest numeric suffix in ``ids``. Never moves backwards."""
        highest = self._counter
        for item_id in ids:
            match = _SUFFIX.search(item_id)
            if match:
                highest = max(highest, int(match.group(1)))
        self._counter = highest
        return self._counter

    def reset(self) -> None:
        self._counter = 0
