from __future__ import annotations

from collections import OrderedDict


class RecentEventCache:
    """Bounded set of recently handled provider event ids.

    Only a fast path in front of the persisted idempotency records; losing an
    entry (eviction, restart) never allows a second application of an event.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._entries: OrderedDict[str, None] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._entries

    def seen(self, event_id: str) -> bool:
        if event_id not in self._entries:
            return False
        self._entries.move_to_end(event_id)
        return True

    def add(self, event_id: str) -> None:
        self._entries[event_id] = None
        self._entries.move_to_end(event_id)
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)

    def discard(self, event_id: str) -> None:
        self._entries.pop(event_id, None)
