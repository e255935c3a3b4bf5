"""
Tests for the SQLite snapshot store and the two-tier cache.
"""
import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from traffic_bulk.parse.models import HISTORY_SOURCE, HistoricalMonthData, TrafficSnapshot, utcnow
from traffic_bulk.store.cache import TrafficCache
from traffic_bulk.store.freshness import current_month, previous_month
from traffic_bulk.store.snapshots import SnapshotStore


def _snapshot(domain="example.com", month_year=None, visits=1000, checked_at=None):
    return TrafficSnapshot(
        domain=domain,
        month_year=month_year or current_month(),
        monthly_visits=visits,
        avg_session_duration_seconds=864,
        bounce_rate=31.93,
        pages_per_visit=3.13,
        checked_at=checked_at or utcnow(),
    )


def test_upsert_keeps_created_at(tmp_path):
    """Test re-storing a month updates metrics but not created_at."""

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            await store.store(_snapshot(visits=1000))
            first = await store.get_snapshot("example.com", current_month())
            await asyncio.sleep(0.01)
            await store.store(_snapshot(visits=2000))
            second = await store.get_snapshot("example.com", current_month())
            latest = await store.get_latest("example.com")
            history = await store.get_history("example.com")
            return first, second, latest, history

    first, second, latest, history = asyncio.run(scenario())

    assert second.monthly_visits == 2000
    assert second.created_at == first.created_at
    assert latest.monthly_visits == 2000
    assert latest.month_year == current_month()
    assert len(history) == 1


def test_latest_never_moves_backwards(tmp_path):
    """Test storing an older month leaves the latest mirror on the newer one."""
    this_month = current_month()
    last_month = previous_month(this_month)

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            await store.store(_snapshot(month_year=this_month, visits=1000))
            await store.store(_snapshot(month_year=last_month, visits=500))
            return await store.get_latest("example.com"), await store.get_history("example.com")

    latest, history = asyncio.run(scenario())

    assert latest.month_year == this_month
    assert latest.monthly_visits == 1000
    assert [s.month_year for s in history] == [this_month, last_month]


def test_store_history_inserts_only_missing_past_months(tmp_path):
    """Test mined history never overwrites a real snapshot or the current month."""
    now = datetime(2025, 11, 20, tzinfo=timezone.utc)

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            await store.store(_snapshot(month_year="2025-10", visits=5000, checked_at=now))
            inserted = await store.store_history(
                "example.com",
                [
                    HistoricalMonthData(month_year="2025-11", monthly_visits=7000),
                    HistoricalMonthData(month_year="2025-10", monthly_visits=1),
                    HistoricalMonthData(month_year="2025-09", monthly_visits=900),
                ],
                now=now,
            )
            october = await store.get_snapshot("example.com", "2025-10")
            september = await store.get_snapshot("example.com", "2025-09")
            november = await store.get_snapshot("example.com", "2025-11")
            return inserted, october, september, november

    inserted, october, september, november = asyncio.run(scenario())

    assert inserted == 1
    assert october.monthly_visits == 5000
    assert september.monthly_visits == 900
    assert september.source == HISTORY_SOURCE
    assert september.bounce_rate is None
    assert november is None


def test_error_log_counts_repeat_failures(tmp_path):
    """Test one error row per domain per day with an increasing retry count."""

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            await store.log_error("example.com", "first")
            first = await store.get_error("example.com")
            await store.log_error("example.com", "second")
            second = await store.get_error("example.com")
            await store.clear_error("example.com")
            cleared = await store.get_error("example.com")
            return first, second, cleared

    first, second, cleared = asyncio.run(scenario())

    assert first.retry_count == 0
    assert second.retry_count == 1
    assert second.message == "second"
    assert cleared is None


def test_cleanup_old_snapshots(tmp_path):
    """Test snapshots beyond the retention window are deleted."""
    now = datetime(2025, 11, 20, tzinfo=timezone.utc)

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            await store.store(_snapshot(month_year="2020-01", checked_at=now))
            await store.store(_snapshot(month_year="2025-11", checked_at=now))
            deleted = await store.cleanup_old_snapshots(24, now=now)
            return deleted, await store.get_history("example.com")

    deleted, history = asyncio.run(scenario())

    assert deleted == 1
    assert [s.month_year for s in history] == ["2025-11"]


def test_stale_domains(tmp_path):
    """Test only domains whose latest snapshot is stale are listed."""
    now = datetime(2025, 11, 20, tzinfo=timezone.utc)

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            await store.store(_snapshot("fresh.com", "2025-11", checked_at=now - timedelta(days=2)))
            await store.store(_snapshot("old.com", "2025-10", checked_at=now - timedelta(days=25)))
            return await store.get_stale_domains(30, now=now)

    assert asyncio.run(scenario()) == ["old.com"]


def test_metadata_and_usage(tmp_path):
    """Test seeded metadata and daily usage aggregation."""

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            seeded = await store.get_metadata("update_cutoff_buffer_days")
            await store.set_metadata("last_refresh", "2025-11-12")
            await store.log_usage(rows=2, errors=1, total_visits=1000, cache_hits=1, cache_misses=1, day="2025-11-20")
            await store.log_usage(rows=3, errors=0, total_visits=500, cache_hits=3, cache_misses=0, day="2025-11-20")
            return seeded, await store.get_metadata("last_refresh"), await store.get_usage("2025-11-20")

    seeded, refreshed, usage = asyncio.run(scenario())

    assert seeded == "2"
    assert refreshed == "2025-11-12"
    assert usage.total_rows == 5
    assert usage.total_errors == 1
    assert usage.total_visits == 1500
    assert usage.cache_hits == 4
    assert usage.cache_misses == 1


def test_cache_lookup_returns_only_fresh(tmp_path):
    """Test the cache serves this month's snapshots and skips stale ones."""

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            cache = TrafficCache(store, max_age_days=30)
            await cache.store(_snapshot("fresh.com"))
            await store.store(_snapshot("old.com", previous_month(current_month())))
            hits = await cache.lookup_batch(["fresh.com", "old.com", "unknown.com"])
            cache.clear_memory()
            from_disk = await cache.lookup_batch(["fresh.com"])
            return hits, from_disk, await cache.is_fresh("old.com")

    hits, from_disk, old_fresh = asyncio.run(scenario())

    assert set(hits) == {"fresh.com"}
    assert from_disk["fresh.com"].monthly_visits == 1000
    assert old_fresh is False


def test_concurrent_stores_all_land(tmp_path):
    """Test parallel store() calls on one connection neither collide nor drop rows."""
    domains = [f"site{i}.com" for i in range(10)]

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            await asyncio.gather(*(store.store(_snapshot(domain=d, visits=100 + i)) for i, d in enumerate(domains)))
            latest = await store.get_latest_batch(domains)
            histories = [await store.get_history(d) for d in domains]
            return latest, histories

    latest, histories = asyncio.run(scenario())

    assert set(latest) == set(domains)
    assert latest["site3.com"].monthly_visits == 103
    assert all(len(history) == 1 for history in histories)


def test_failed_latest_write_rolls_back_snapshot(tmp_path):
    """Test the snapshot row is not kept when the latest mirror write fails."""

    async def scenario():
        async with SnapshotStore(tmp_path / "traffic.db") as store:
            await store.db.execute(
                "CREATE TRIGGER fail_latest BEFORE INSERT ON traffic_latest "
                "BEGIN SELECT RAISE(ABORT, 'latest write refused'); END"
            )
            with pytest.raises(sqlite3.DatabaseError):
                await store.store(_snapshot(visits=1000))
            snapshot = await store.get_snapshot("example.com", current_month())
            latest = await store.get_latest("example.com")

            await store.db.execute("DROP TRIGGER fail_latest")
            await store.store(_snapshot(visits=2000))
            stored = await store.get_latest("example.com")
            return snapshot, latest, stored

    snapshot, latest, stored = asyncio.run(scenario())

    assert snapshot is None
    assert latest is None
    assert stored.monthly_visits == 2000
