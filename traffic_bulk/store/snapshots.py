"""SQLite snapshot store: monthly snapshots, latest mirror, error log, metadata and usage."""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional

import aiosqlite

from traffic_bulk.config import config
from traffic_bulk.parse.models import (
    HISTORY_SOURCE,
    HistoricalMonthData,
    ScrapeError,
    TrafficSnapshot,
    UsageStats,
    utcnow,
)
from traffic_bulk.store.freshness import current_month, is_snapshot_fresh, months_back

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS traffic_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        domain TEXT NOT NULL,
        month_year TEXT NOT NULL,
        monthly_visits INTEGER,
        avg_session_duration_seconds INTEGER,
        bounce_rate REAL,
        pages_per_visit REAL,
        checked_at TIMESTAMP NOT NULL,
        source TEXT NOT NULL DEFAULT 'traffic.cv',
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        UNIQUE(domain, month_year)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_snapshots_month ON traffic_snapshots(month_year)",
    "CREATE INDEX IF NOT EXISTS idx_snapshots_checked_at ON traffic_snapshots(checked_at)",
    """
    CREATE TABLE IF NOT EXISTS traffic_latest (
        domain TEXT PRIMARY KEY,
        month_year TEXT NOT NULL,
        monthly_visits INTEGER,
        avg_session_duration_seconds INTEGER,
        bounce_rate REAL,
        pages_per_visit REAL,
        checked_at TIMESTAMP NOT NULL,
        source TEXT NOT NULL DEFAULT 'traffic.cv',
        updated_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scrape_errors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        domain TEXT NOT NULL,
        day TEXT NOT NULL,
        error_message TEXT,
        attempted_at TIMESTAMP NOT NULL,
        retry_count INTEGER NOT NULL DEFAULT 0,
        UNIQUE(domain, day)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS data_metadata (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_logs (
        day TEXT PRIMARY KEY,
        total_rows INTEGER NOT NULL DEFAULT 0,
        total_errors INTEGER NOT NULL DEFAULT 0,
        total_visits INTEGER NOT NULL DEFAULT 0,
        cache_hits INTEGER NOT NULL DEFAULT 0,
        cache_misses INTEGER NOT NULL DEFAULT 0,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

# Upstream releases monthly data around the 10th; cutoff adds a 2 day buffer
DEFAULT_METADATA = {
    "cache_ttl_days": str(config.CACHE_TTL_DAYS),
    "update_cutoff_day": str(config.UPDATE_CUTOFF_DAY),
    "update_cutoff_buffer_days": "2",
    "data_source": "traffic.cv (SimilarWeb)",
}

SNAPSHOT_COLUMNS = (
    "domain, month_year, monthly_visits, avg_session_duration_seconds, "
    "bounce_rate, pages_per_visit, checked_at, source"
)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


def _today(now: Optional[datetime] = None) -> str:
    return (now or utcnow()).strftime("%Y-%m-%d")


def _row_to_snapshot(row: aiosqlite.Row) -> TrafficSnapshot:
    keys = row.keys()
    return TrafficSnapshot(
        domain=row["domain"],
        month_year=row["month_year"],
        monthly_visits=row["monthly_visits"],
        avg_session_duration_seconds=row["avg_session_duration_seconds"],
        bounce_rate=row["bounce_rate"],
        pages_per_visit=row["pages_per_visit"],
        checked_at=_parse_ts(row["checked_at"]),
        source=row["source"],
        created_at=_parse_ts(row["created_at"]) if "created_at" in keys else None,
    )


class SnapshotStore:
    """
    Durable tier of the traffic cache.

    One aiosqlite connection per store, opened by ``open()``. Writes are
    serialized with an asyncio lock; multi-statement writes run in a
    ``BEGIN IMMEDIATE`` transaction and roll back on any error.
    """

    def __init__(self, db_path: Path | str = config.DATABASE_PATH):
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock: Optional[asyncio.Lock] = None

    async def open(self) -> "SnapshotStore":
        """Connect and create tables if they don't exist."""
        if self._db is not None:
            return self
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        self._lock = asyncio.Lock()
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA busy_timeout=5000")
        for statement in SCHEMA:
            await self._db.execute(statement)
        await self._db.executemany(
            "INSERT OR IGNORE INTO data_metadata (key, value) VALUES (?, ?)",
            list(DEFAULT_METADATA.items()),
        )
        logger.info(f"Snapshot store initialized at {self.db_path}")
        return self

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            self._lock = None

    async def __aenter__(self) -> "SnapshotStore":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SnapshotStore is not open; call open() first")
        return self._db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        db = self.db
        async with self._lock:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")

    async def _fetchall(self, sql: str, params: Iterable = ()) -> list[aiosqlite.Row]:
        async with self.db.execute(sql, tuple(params)) as cursor:
            return list(await cursor.fetchall())

    async def _fetchone(self, sql: str, params: Iterable = ()) -> Optional[aiosqlite.Row]:
        async with self.db.execute(sql, tuple(params)) as cursor:
            return await cursor.fetchone()

    # Snapshots

    async def store(self, snapshot: TrafficSnapshot) -> None:
        """Upsert a monthly snapshot and mirror it into traffic_latest atomically."""
        now = _iso(utcnow())
        values = (
            snapshot.domain,
            snapshot.month_year,
            snapshot.monthly_visits,
            snapshot.avg_session_duration_seconds,
            snapshot.bounce_rate,
            snapshot.pages_per_visit,
            _iso(snapshot.checked_at),
            snapshot.source,
        )
        async with self._transaction() as db:
            await db.execute(
                f"""
                INSERT INTO traffic_snapshots ({SNAPSHOT_COLUMNS}, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(domain, month_year) DO UPDATE SET
                    monthly_visits = excluded.monthly_visits,
                    avg_session_duration_seconds = excluded.avg_session_duration_seconds,
                    bounce_rate = excluded.bounce_rate,
                    pages_per_visit = excluded.pages_per_visit,
                    checked_at = excluded.checked_at,
                    source = excluded.source,
                    updated_at = excluded.updated_at
                """,
                values + (now, now),
            )
            # Latest only moves forward in time
            await db.execute(
                f"""
                INSERT INTO traffic_latest ({SNAPSHOT_COLUMNS}, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(domain) DO UPDATE SET
                    month_year = excluded.month_year,
                    monthly_visits = excluded.monthly_visits,
                    avg_session_duration_seconds = excluded.avg_session_duration_seconds,
                    bounce_rate = excluded.bounce_rate,
                    pages_per_visit = excluded.pages_per_visit,
                    checked_at = excluded.checked_at,
                    source = excluded.source,
                    updated_at = excluded.updated_at
                WHERE excluded.month_year >= traffic_latest.month_year
                """,
                values + (now,),
            )
        logger.debug(f"Stored snapshot {snapshot.domain} {snapshot.month_year}")

    async def store_history(
        self,
        domain: str,
        months: list[HistoricalMonthData],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Insert visits-only snapshots for months before the current one.

        Existing rows are never overwritten. Returns the number inserted.
        """
        this_month = current_month(now)
        checked_at = _iso(now or utcnow())
        rows = [
            (domain, m.month_year, m.monthly_visits, checked_at, HISTORY_SOURCE, checked_at, checked_at)
            for m in months
            if m.month_year < this_month and m.monthly_visits is not None
        ]
        if not rows:
            return 0
        inserted = 0
        async with self._transaction() as db:
            for row in rows:
                cursor = await db.execute(
                    """
                    INSERT OR IGNORE INTO traffic_snapshots
                        (domain, month_year, monthly_visits, checked_at, source, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    row,
                )
                inserted += cursor.rowcount
                await cursor.close()
        if inserted:
            logger.debug(f"Stored {inserted} historical month(s) for {domain}")
        return inserted

    async def get_latest(self, domain: str) -> Optional[TrafficSnapshot]:
        row = await self._fetchone(
            f"SELECT {SNAPSHOT_COLUMNS} FROM traffic_latest WHERE domain = ?", (domain,)
        )
        return _row_to_snapshot(row) if row else None

    async def get_latest_batch(self, domains: list[str]) -> dict[str, TrafficSnapshot]:
        """Latest snapshot per domain; domains never stored are absent."""
        if not domains:
            return {}
        placeholders = ", ".join("?" for _ in domains)
        rows = await self._fetchall(
            f"SELECT {SNAPSHOT_COLUMNS} FROM traffic_latest WHERE domain IN ({placeholders})",
            domains,
        )
        return {row["domain"]: _row_to_snapshot(row) for row in rows}

    async def get_snapshot(self, domain: str, month_year: str) -> Optional[TrafficSnapshot]:
        row = await self._fetchone(
            f"""
            SELECT {SNAPSHOT_COLUMNS}, created_at FROM traffic_snapshots
            WHERE domain = ? AND month_year = ?
            """,
            (domain, month_year),
        )
        return _row_to_snapshot(row) if row else None

    async def get_history(self, domain: str, months: int = 12) -> list[TrafficSnapshot]:
        """Newest first, at most ``months`` rows."""
        rows = await self._fetchall(
            f"""
            SELECT {SNAPSHOT_COLUMNS}, created_at FROM traffic_snapshots
            WHERE domain = ?
            ORDER BY month_year DESC
            LIMIT ?
            """,
            (domain, months),
        )
        return [_row_to_snapshot(row) for row in rows]

    async def get_stale_domains(
        self, max_age_days: int = config.CACHE_TTL_DAYS, now: Optional[datetime] = None
    ) -> list[str]:
        """Domains whose latest snapshot is no longer fresh."""
        rows = await self._fetchall("SELECT domain, month_year, checked_at FROM traffic_latest ORDER BY domain")
        return [
            row["domain"]
            for row in rows
            if not is_snapshot_fresh(row["month_year"], _parse_ts(row["checked_at"]), max_age_days, now)
        ]

    async def cleanup_old_snapshots(self, keep_months: int = config.RETENTION_MONTHS, now: Optional[datetime] = None) -> int:
        """Delete snapshots older than ``keep_months`` months. Returns rows deleted."""
        cutoff = months_back(current_month(now), keep_months)
        async with self._transaction() as db:
            cursor = await db.execute("DELETE FROM traffic_snapshots WHERE month_year < ?", (cutoff,))
            deleted = cursor.rowcount
            await cursor.close()
        logger.info(f"Retention sweep removed {deleted} snapshot(s) older than {cutoff}")
        return deleted

    # Error log

    async def log_error(self, domain: str, message: str, now: Optional[datetime] = None) -> None:
        """Record a failure; repeat failures on the same day bump retry_count."""
        attempted_at = now or utcnow()
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT INTO scrape_errors (domain, day, error_message, attempted_at, retry_count)
                VALUES (?, ?, ?, ?, 0)
                ON CONFLICT(domain, day) DO UPDATE SET
                    error_message = excluded.error_message,
                    attempted_at = excluded.attempted_at,
                    retry_count = scrape_errors.retry_count + 1
                """,
                (domain, _today(attempted_at), message[:500], _iso(attempted_at)),
            )

    async def get_error(self, domain: str, day: Optional[str] = None) -> Optional[ScrapeError]:
        row = await self._fetchone(
            """
            SELECT domain, day, error_message, attempted_at, retry_count
            FROM scrape_errors WHERE domain = ? AND day = ?
            """,
            (domain, day or _today()),
        )
        if row is None:
            return None
        return ScrapeError(
            domain=row["domain"],
            day=row["day"],
            message=row["error_message"] or "",
            attempted_at=_parse_ts(row["attempted_at"]),
            retry_count=row["retry_count"],
        )

    async def clear_error(self, domain: str) -> None:
        async with self._transaction() as db:
            await db.execute("DELETE FROM scrape_errors WHERE domain = ?", (domain,))

    # Metadata

    async def get_metadata(self, key: str) -> Optional[str]:
        row = await self._fetchone("SELECT value FROM data_metadata WHERE key = ?", (key,))
        return row["value"] if row else None

    async def set_metadata(self, key: str, value: str) -> None:
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT INTO data_metadata (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )

    # Usage

    async def log_usage(
        self,
        rows: int,
        errors: int,
        total_visits: int,
        cache_hits: int,
        cache_misses: int,
        day: Optional[str] = None,
    ) -> None:
        """Add one request's numbers to the daily aggregate."""
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT INTO usage_logs (day, total_rows, total_errors, total_visits, cache_hits, cache_misses)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(day) DO UPDATE SET
                    total_rows = total_rows + excluded.total_rows,
                    total_errors = total_errors + excluded.total_errors,
                    total_visits = total_visits + excluded.total_visits,
                    cache_hits = cache_hits + excluded.cache_hits,
                    cache_misses = cache_misses + excluded.cache_misses,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (day or _today(), rows, errors, total_visits, cache_hits, cache_misses),
            )

    async def get_usage(self, day: Optional[str] = None) -> Optional[UsageStats]:
        row = await self._fetchone(
            """
            SELECT day, total_rows, total_errors, total_visits, cache_hits, cache_misses
            FROM usage_logs WHERE day = ?
            """,
            (day or _today(),),
        )
        return UsageStats(**dict(row)) if row else None
