"""
Runs one ingestion of a pool stats snapshot: read, record the pool rollup, write every selected
user and worker, then record the run itself.
The pool rollup and the per-user writes run concurrently and do not affect each other.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Optional

from poolstats.core.config import Settings
from poolstats.core.database import Database
from poolstats.core.logging_config import get_logger
from poolstats.core.metrics import LAST_RUN_TIMESTAMP, RUN_DURATION, RUN_STATUS, STATUS_VALUES
from poolstats.db.models import IngestionRun
from poolstats.ingestion.coordinator import process_users
from poolstats.ingestion.pool_stats import record_pool_stats, select_top_users
from poolstats.ingestion.snapshot_reader import read_snapshot
from poolstats.schemas.snapshot import PoolSnapshot
from poolstats.schemas.summary import RunSummary

logger = get_logger("ingest_pipeline")


def select_entries(snapshot: PoolSnapshot, settings: Settings):
    if settings.INGEST_MODE == "top":
        return select_top_users(snapshot, limit=settings.TOP_N, metric=settings.TOP_METRIC)
    return list(snapshot.users.items())


async def _record_pool(db: Database, snapshot: PoolSnapshot, ingested_at: datetime) -> Optional[str]:
    try:
        await record_pool_stats(db, snapshot, ingested_at)
    except Exception as e:
        logger.error("pool_stats_failed", error=f"{type(e).__name__}: {e}")
        return f"{type(e).__name__}: {e}"
    return None


async def record_run(db: Database, summary: RunSummary):
    async with db.session() as session:
        async with session.begin():
            session.add(IngestionRun(
                source_path=summary.source_path,
                mode=summary.mode,
                status=summary.status,
                users_total=summary.users.total,
                users_succeeded=summary.users.succeeded,
                users_failed=summary.users.failed,
                error_log={
                    "pool_stats": summary.pool_stats_error,
                    "users": [f.model_dump() for f in summary.users.failures],
                },
                started_at=summary.started_at,
                run_duration_ms=summary.duration_ms,
            ))


async def run_ingestion(db: Database, settings: Settings) -> RunSummary:
    """
    Fatal errors (SnapshotUnavailable, SnapshotMalformed, ConnectionFailure) propagate.
    Per-address failures are collected into the returned summary.
    """
    start_time = time.time()
    ingested_at = datetime.now(timezone.utc)
    source_path = settings.snapshot_path
    logger.info("ingest_start", path=str(source_path), mode=settings.INGEST_MODE, batch_size=settings.BATCH_SIZE)

    snapshot = await read_snapshot(source_path)
    await db.check_connection()

    entries = select_entries(snapshot, settings)
    logger.info("users_selected", selected=len(entries), in_snapshot=len(snapshot.users))

    pool_error, users = await asyncio.gather(
        _record_pool(db, snapshot, ingested_at),
        process_users(
            db,
            entries,
            ingested_at,
            batch_size=settings.BATCH_SIZE,
            timeout=settings.TRANSACTION_TIMEOUT_SECONDS,
        ),
    )

    summary = RunSummary(
        source_path=str(source_path),
        mode=settings.INGEST_MODE,
        started_at=ingested_at,
        duration_ms=int((time.time() - start_time) * 1000),
        pool_stats_recorded=pool_error is None,
        pool_stats_error=pool_error,
        users=users,
    )

    try:
        await record_run(db, summary)
    except Exception as e:
        # The data itself is committed; a missing run record is only logged
        logger.error("run_record_failed", error=f"{type(e).__name__}: {e}")

    RUN_STATUS.set(STATUS_VALUES[summary.status])
    RUN_DURATION.labels(mode=summary.mode).observe(summary.duration_ms / 1000.0)
    LAST_RUN_TIMESTAMP.set(ingested_at.timestamp())

    for failure in summary.users.failures:
        logger.warning("failed_address", address=failure.address, error=failure.error)
    logger.info(
        "ingest_finish",
        status=summary.status,
        users_total=summary.users.total,
        users_succeeded=summary.users.succeeded,
        users_failed=summary.users.failed,
        pool_stats_recorded=summary.pool_stats_recorded,
        duration_ms=summary.duration_ms,
    )
    return summary
