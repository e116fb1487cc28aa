"""
Unit tests for SeenSet.
"""

import pytest
from mailwatch.seen_set import SeenSet


class TestSeenSet:
    """Test cases for SeenSet."""

    def test_add_and_membership(self):
        seen = SeenSet(capacity=5)
        assert seen.add("a") is True
        assert "a" in seen
        assert "b" not in seen
        assert len(seen) == 1

    def test_add_existing_returns_false(self):
        seen = SeenSet(capacity=5)
        seen.add("a")
        assert seen.add("a") is False
        assert len(seen) == 1

    def test_iteration_is_insertion_order(self):
        seen = SeenSet(capacity=5)
        for mid in ["c", "a", "b"]:
            seen.add(mid)
        assert list(seen) == ["c", "a", "b"]
        assert seen.snapshot() == ("c", "a", "b")

    def test_readding_does_not_refresh_position(self):
        seen = SeenSet(capacity=2)
        seen.add("a")
        seen.add("b")
        seen.add("a")
        seen.add("c")
        assert seen.evict_overflow() == ["a"]
        assert list(seen) == ["b", "c"]

    def test_evict_overflow_removes_oldest_first(self):
        seen = SeenSet(capacity=3)
        for mid in ["a", "b", "c", "d", "e"]:
            seen.add(mid)
        # size may exceed capacity until eviction runs
        assert len(seen) == 5

        evicted = seen.evict_overflow()

        assert evicted == ["a", "b"]
        assert list(seen) == ["c", "d", "e"]
        assert len(seen) == 3

    def test_evict_overflow_under_capacity_is_noop(self):
        seen = SeenSet(capacity=3)
        seen.add("a")
        assert seen.evict_overflow() == []
        assert list(seen) == ["a"]

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_invalid_capacity(self, capacity):
        with pytest.raises(ValueError):
            SeenSet(capacity=capacity)

    def test_default_capacity(self):
        assert SeenSet().capacity == 1000
