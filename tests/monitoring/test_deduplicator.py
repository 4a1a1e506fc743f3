"""Tests for Deduplicator."""

import threading

import pytest

from session_tail.monitoring.deduplicator import Deduplicator


class TestDeduplicator:
    """Tests for bounded at-most-once marking."""

    def test_first_sighting_wins(self) -> None:
        """Test that only the first mark of a key succeeds."""
        dedup = Deduplicator()

        assert dedup.try_mark_seen("a") is True
        assert dedup.try_mark_seen("a") is False
        assert "a" in dedup
        assert len(dedup) == 1

    def test_oldest_evicted_first(self) -> None:
        """Test insertion-order eviction once capacity is exceeded."""
        dedup = Deduplicator(capacity=2)
        dedup.try_mark_seen("a")
        dedup.try_mark_seen("b")
        dedup.try_mark_seen("c")

        assert "a" not in dedup
        assert "b" in dedup and "c" in dedup
        assert dedup.evicted_count == 1
        # An evicted key can pass again
        assert dedup.try_mark_seen("a") is True

    def test_bounded_at_capacity(self) -> None:
        """Test 150,000 distinct keys against the default capacity of 100,000."""
        dedup = Deduplicator()
        accepted = sum(dedup.try_mark_seen(f"key-{i}") for i in range(150_000))

        assert accepted == 150_000
        assert len(dedup) == 100_000
        assert "key-0" not in dedup
        assert "key-49999" not in dedup
        assert "key-50000" in dedup
        assert "key-149999" in dedup

    def test_clear(self) -> None:
        """Test that clear forgets all keys."""
        dedup = Deduplicator(capacity=1)
        dedup.try_mark_seen("a")
        dedup.try_mark_seen("b")
        dedup.clear()

        assert len(dedup) == 0
        assert dedup.evicted_count == 0
        assert dedup.try_mark_seen("b") is True

    def test_invalid_capacity(self) -> None:
        """Test that a non-positive capacity is rejected."""
        with pytest.raises(ValueError):
            Deduplicator(capacity=0)

    def test_concurrent_marking(self) -> None:
        """Test that exactly one of many racing threads wins each key."""
        dedup = Deduplicator()
        wins: list[str] = []
        wins_lock = threading.Lock()
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            for i in range(1000):
                if dedup.try_mark_seen(f"k{i}"):
                    with wins_lock:
                        wins.append(f"k{i}")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(wins) == sorted(f"k{i}" for i in range(1000))
