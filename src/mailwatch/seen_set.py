"""
Bounded recency memory of delivered message identifiers.
"""

from __future__ import annotations
from collections import OrderedDict
from typing import Iterator, List

from mailwatch.models import DEFAULT_SEEN_SET_CAPACITY


class SeenSet:
    """
    Insertion-ordered set with a hard size bound.

    Membership is O(1). Eviction is explicit: ``evict_overflow`` drops the
    oldest-inserted identifiers until the size equals ``capacity``. Adding an
    identifier that is already present does not refresh its position.
    """

    def __init__(self, capacity: int = DEFAULT_SEEN_SET_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"SeenSet capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._ids: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        """Iterate oldest-inserted first."""
        return iter(self._ids)

    def add(self, message_id: str) -> bool:
        """Add an identifier. Returns False if it was already present."""
        if message_id in self._ids:
            return False
        self._ids[message_id] = None
        return True

    def evict_overflow(self) -> List[str]:
        """Remove oldest-inserted identifiers beyond capacity and return them, oldest first."""
        evicted: List[str] = []
        while len(self._ids) > self.capacity:
            oldest, _ = self._ids.popitem(last=False)
            evicted.append(oldest)
        return evicted

    def snapshot(self) -> tuple[str, ...]:
        return tuple(self._ids)

    def __repr__(self) -> str:
        return f"SeenSet(size={len(self._ids)}, capacity={self.capacity})"
