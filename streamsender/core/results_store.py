"""
Results Store

Persists the stats of each run keyed by its base manifest ID.

Two backends share the same contract:
- MemoryResultStore keeps stats for the process lifetime (tests, dry runs).
- PostgresResultStore keeps them in a versioned Postgres table.

insert() is an upsert: the latest record for a manifest ID replaces the
previous one entirely. all() is ordered by start time, newest first.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Mapping, Optional, Protocol

import asyncpg

from streamsender.config import settings
from streamsender.connectors import postgres_pool
from streamsender.core.errors import StatsNotFound, StorageFailure
from streamsender.core.stats_codec import (
    datetime_to_unix_nanos,
    decode_latencies,
    encode_latencies,
    format_success_rate,
    parse_success_rate,
    unix_nanos_to_datetime,
)
from streamsender.models import LatencySummary, Stats

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

_STORAGE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    TimeoutError,
)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ResultStore(Protocol):
    async def insert(self, manifest_id: str, stats: Stats) -> None: ...

    async def select(self, manifest_id: str) -> Stats: ...

    async def all(self) -> dict[str, Stats]: ...


def _newest_first(items: list[tuple[str, Stats]]) -> list[tuple[str, Stats]]:
    # Runs without a start time sort last, like NULLS LAST in Postgres.
    with_time = [i for i in items if i[1].start_time is not None]
    without_time = [i for i in items if i[1].start_time is None]
    with_time.sort(key=lambda i: datetime_to_unix_nanos(i[1].start_time), reverse=True)
    return with_time + without_time


class MemoryResultStore:
    """In-process store; copies records on the way in and out."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._stats: dict[str, Stats] = {}

    async def insert(self, manifest_id: str, stats: Stats) -> None:
        async with self._lock:
            self._stats[manifest_id] = stats.model_copy(deep=True)

    async def select(self, manifest_id: str) -> Stats:
        async with self._lock:
            stats = self._stats.get(manifest_id)
            if stats is None:
                raise StatsNotFound(manifest_id)
            return stats.model_copy(deep=True)

    async def all(self) -> dict[str, Stats]:
        async with self._lock:
            items = [(mid, s.model_copy(deep=True)) for mid, s in self._stats.items()]
        return dict(_newest_first(items))

    async def close(self) -> None:
        return None


_STATS_COLUMNS = (
    "base_manifest_id",
    "rtmp_streams",
    "media_streams",
    "total_segments",
    "sent_segments",
    "downloaded_segments",
    "total_download_segments",
    "failed_to_download_segments",
    "profiles_num",
    "retries",
    "success_rate",
    "connection_lost",
    "finished",
    "raw_source_latencies",
    "raw_transcoded_latencies",
    "gaps",
    "start_time",
    "source_latency_avg",
    "source_latency_p50",
    "source_latency_p95",
    "source_latency_p99",
    "transcoded_latency_avg",
    "transcoded_latency_p50",
    "transcoded_latency_p95",
    "transcoded_latency_p99",
)

# Columns added by schema version 2.
_SUMMARY_COLUMNS = _STATS_COLUMNS[17:]


def _summary_params(summary: Optional[LatencySummary]) -> list[Optional[int]]:
    if summary is None:
        return [None, None, None, None]
    return [summary.avg, summary.p50, summary.p95, summary.p99]


def _summary_from_row(row: Mapping[str, Any], prefix: str) -> Optional[LatencySummary]:
    avg = row.get(f"{prefix}_avg")
    if avg is None:
        return None
    return LatencySummary(
        avg=int(avg),
        p50=int(row.get(f"{prefix}_p50") or 0),
        p95=int(row.get(f"{prefix}_p95") or 0),
        p99=int(row.get(f"{prefix}_p99") or 0),
    )


def stats_to_params(manifest_id: str, stats: Stats) -> list[Any]:
    """Flatten a Stats record into positional parameters matching _STATS_COLUMNS."""
    return [
        manifest_id,
        stats.rtmp_streams,
        stats.media_streams,
        stats.total_segments_to_send,
        stats.sent_segments,
        stats.downloaded_segments,
        stats.should_have_downloaded_segments,
        stats.failed_to_download_segments,
        stats.profiles_num,
        stats.retries,
        format_success_rate(stats.success_rate),
        stats.connection_lost,
        stats.finished,
        encode_latencies(stats.raw_source_latencies),
        encode_latencies(stats.raw_transcoded_latencies),
        stats.gaps,
        datetime_to_unix_nanos(stats.start_time),
        *_summary_params(stats.source_latencies),
        *_summary_params(stats.transcoded_latencies),
    ]


def stats_from_row(row: Mapping[str, Any]) -> Stats:
    """
    Decode a stats row.

    Version 1 rows have no summary columns (or NULLs there); their summaries
    are derived from the raw latency blobs.
    """
    data = {
        "rtmp_streams": row["rtmp_streams"] or 0,
        "media_streams": row["media_streams"] or 0,
        "total_segments_to_send": row["total_segments"] or 0,
        "sent_segments": row["sent_segments"] or 0,
        "downloaded_segments": row["downloaded_segments"] or 0,
        "should_have_downloaded_segments": row["total_download_segments"] or 0,
        "failed_to_download_segments": row["failed_to_download_segments"] or 0,
        "profiles_num": row["profiles_num"] or 0,
        "retries": row["retries"] or 0,
        "success_rate": parse_success_rate(row["success_rate"]),
        "connection_lost": row["connection_lost"] or 0,
        "finished": bool(row["finished"]),
        "raw_source_latencies": decode_latencies(row["raw_source_latencies"]),
        "raw_transcoded_latencies": decode_latencies(row["raw_transcoded_latencies"]),
        "gaps": row["gaps"] or 0,
        "start_time": unix_nanos_to_datetime(row["start_time"]),
        "source_latencies": _summary_from_row(row, "source_latency"),
        "transcoded_latencies": _summary_from_row(row, "transcoded_latency"),
    }
    return Stats.model_validate(data)


class PostgresResultStore:
    """
    Postgres-backed store.

    The pool only needs execute_query/fetch_one/fetch_all/fetch_val, which keeps
    the store usable with any PostgresConnectionPool-compatible object.
    """

    def __init__(self, pool: Any, *, table: str = "stats") -> None:
        if not _IDENTIFIER_RE.match(table):
            raise ValueError(f"Invalid results table name: {table!r}")
        self._pool = pool
        self.table = table

    def _create_table_sql(self) -> str:
        return f"""
        CREATE TABLE IF NOT EXISTS {self.table} (
            base_manifest_id TEXT PRIMARY KEY,
            rtmp_streams INTEGER,
            media_streams INTEGER,
            total_segments INTEGER,
            sent_segments INTEGER,
            downloaded_segments INTEGER,
            total_download_segments INTEGER,
            failed_to_download_segments INTEGER,
            profiles_num INTEGER,
            retries INTEGER,
            success_rate TEXT,
            connection_lost INTEGER,
            finished BOOLEAN,
            raw_source_latencies BYTEA,
            raw_transcoded_latencies BYTEA,
            gaps INTEGER,
            start_time BIGINT,
            source_latency_avg BIGINT,
            source_latency_p50 BIGINT,
            source_latency_p95 BIGINT,
            source_latency_p99 BIGINT,
            transcoded_latency_avg BIGINT,
            transcoded_latency_p50 BIGINT,
            transcoded_latency_p95 BIGINT,
            transcoded_latency_p99 BIGINT
        )
        """

    async def migrate(self) -> int:
        """
        Bring the stats table to SCHEMA_VERSION.

        Returns:
            The schema version in effect after migrating.
        """
        try:
            await self._pool.execute_query(
                "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)"
            )
            current = await self._pool.fetch_val("SELECT MAX(version) FROM schema_version")
            if current is None:
                existing = await self._pool.fetch_val(
                    "SELECT to_regclass($1) IS NOT NULL", self.table
                )
                current = 1 if existing else 0

            if current >= SCHEMA_VERSION:
                return int(current)

            if current == 0:
                logger.info("Creating %s table (schema v%d)", self.table, SCHEMA_VERSION)
                await self._pool.execute_query(self._create_table_sql())
            else:
                logger.info(
                    "Migrating %s table from schema v%d to v%d",
                    self.table,
                    current,
                    SCHEMA_VERSION,
                )
                for column in _SUMMARY_COLUMNS:
                    await self._pool.execute_query(
                        f"ALTER TABLE {self.table} ADD COLUMN IF NOT EXISTS {column} BIGINT"
                    )

            await self._pool.execute_query("DELETE FROM schema_version")
            await self._pool.execute_query(
                "INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION
            )
            return SCHEMA_VERSION
        except _STORAGE_ERRORS as e:
            raise StorageFailure(f"unable to migrate {self.table} table: {e}") from e

    async def insert(self, manifest_id: str, stats: Stats) -> None:
        columns = ", ".join(_STATS_COLUMNS)
        placeholders = ", ".join(f"${i}" for i in range(1, len(_STATS_COLUMNS) + 1))
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in _STATS_COLUMNS[1:])
        query = f"""
        INSERT INTO {self.table} ({columns})
        VALUES ({placeholders})
        ON CONFLICT (base_manifest_id) DO UPDATE SET {updates}
        """
        try:
            await self._pool.execute_query(query, *stats_to_params(manifest_id, stats))
        except _STORAGE_ERRORS as e:
            raise StorageFailure(f"unable to insert stats for {manifest_id}: {e}") from e

    async def select(self, manifest_id: str) -> Stats:
        query = f"""
        SELECT {", ".join(_STATS_COLUMNS)}
        FROM {self.table}
        WHERE base_manifest_id = $1
        """
        try:
            row = await self._pool.fetch_one(query, manifest_id)
        except _STORAGE_ERRORS as e:
            raise StorageFailure(f"unable to select stats for {manifest_id}: {e}") from e
        if row is None:
            raise StatsNotFound(manifest_id)
        try:
            return stats_from_row(row)
        except ValueError as e:
            raise StorageFailure(f"unable to decode stats for {manifest_id}: {e}") from e

    async def all(self) -> dict[str, Stats]:
        query = f"""
        SELECT {", ".join(_STATS_COLUMNS)}
        FROM {self.table}
        ORDER BY start_time DESC NULLS LAST
        """
        try:
            rows = await self._pool.fetch_all(query)
        except _STORAGE_ERRORS as e:
            raise StorageFailure(f"unable to list stats: {e}") from e

        result: dict[str, Stats] = {}
        for row in rows:
            manifest_id = row["base_manifest_id"]
            try:
                result[manifest_id] = stats_from_row(row)
            except ValueError as e:
                logger.warning("Skipping undecodable stats row %s: %s", manifest_id, e)
        return result

    async def close(self) -> None:
        await self._pool.close()


async def create_results_store() -> MemoryResultStore | PostgresResultStore:
    """Build and prepare the store selected by RESULTS_BACKEND."""
    if settings.RESULTS_BACKEND == "memory":
        logger.info("Using in-memory results store")
        return MemoryResultStore()

    pool = postgres_pool.get_default_pool()
    await pool.initialize()
    store = PostgresResultStore(pool, table=settings.RESULTS_TABLE)
    version = await store.migrate()
    logger.info("Results table %s ready (schema v%d)", store.table, version)
    return store
