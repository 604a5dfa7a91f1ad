from __future__ import annotations

import pytest

from app.economy.billing.event_cache import RecentEventCache


def test_cache_remembers_added_events() -> None:
    cache = RecentEventCache(capacity=3)
    cache.add("evt_1")

    assert cache.seen("evt_1") is True
    assert cache.seen("evt_2") is False
    assert "evt_1" in cache
    assert len(cache) == 1


def test_cache_evicts_least_recently_used_entry() -> None:
    cache = RecentEventCache(capacity=2)
    cache.add("evt_1")
    cache.add("evt_2")
    assert cache.seen("evt_1") is True

    cache.add("evt_3")

    assert "evt_2" not in cache
    assert "evt_1" in cache
    assert "evt_3" in cache
    assert len(cache) == cache.capacity == 2


def test_cache_discard_is_idempotent() -> None:
    cache = RecentEventCache(capacity=2)
    cache.add("evt_1")

    cache.discard("evt_1")
    cache.discard("evt_1")

    assert "evt_1" not in cache


@pytest.mark.parametrize("capacity", [0, -1])
def test_cache_rejects_non_positive_capacity(capacity: int) -> None:
    with pytest.raises(ValueError):
        RecentEventCache(capacity=capacity)
