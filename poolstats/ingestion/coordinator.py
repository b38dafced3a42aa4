"""
Writes every user's and worker's state for one snapshot.

Users are split into fixed-size groups. Groups run one after another; inside a group each
address runs concurrently in its own session and transaction, so at most one group's worth
of connections is open at a time. A failing address is rolled back on its own and recorded;
its siblings and every earlier group stay committed.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Sequence, Tuple, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from poolstats.core.database import Database
from poolstats.core.errors import PerAddressWriteFailure
from poolstats.core.logging_config import get_logger
from poolstats.core.metrics import USERS_PROCESSED, WORKERS_PROCESSED
from poolstats.db.models import MAX_INT64, UserStats, WorkerStats
from poolstats.ingestion.normalizer import coerce_float, coerce_int, normalize_windows, unix_to_datetime
from poolstats.ingestion.resolver import upsert_user, upsert_worker
from poolstats.schemas.snapshot import UserRecord, WorkerRecord
from poolstats.schemas.summary import FailedAddress, IngestSummary, UserOutcome

logger = get_logger("batch_coordinator")

DEFAULT_BATCH_SIZE = 10

T = TypeVar("T")


def partition(entries: Sequence[T], size: int = DEFAULT_BATCH_SIZE) -> List[List[T]]:
    """Splits entries into consecutive groups of `size`, keeping order. The last group may be short."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    entries = list(entries)
    return [entries[i:i + size] for i in range(0, len(entries), size)]


def worker_values(worker: WorkerRecord) -> Dict[str, Any]:
    return {
        **normalize_windows(worker.computed_hash_rate),
        "shares": coerce_int(worker.shares),
        "best_share": coerce_float(worker.bestshare),
        "best_ever": coerce_int(worker.bestever),
        "last_update": unix_to_datetime(worker.lastshare),
    }


def user_stats_values(user: UserRecord) -> Dict[str, Any]:
    last_shares = [coerce_int(w.lastshare, MAX_INT64) for w in user.workers.values()]
    return {
        **normalize_windows(user.computed_hash_rate),
        "shares": coerce_int(user.shares),
        "best_share": coerce_float(user.bestshare),
        "best_ever": coerce_int(user.bestever),
        "worker_count": len(user.workers),
        "last_share": max(last_shares, default=0),
    }


async def insert_user_stats(session: AsyncSession, address: str, values: Dict[str, Any], ingested_at: datetime):
    session.add(UserStats(user_address=address, timestamp=ingested_at, **values))
    await session.flush()


async def insert_worker_stats(session: AsyncSession, worker_id: int, values: Dict[str, Any], ingested_at: datetime):
    session.add(WorkerStats(worker_id=worker_id, timestamp=ingested_at, **values))
    await session.flush()


async def ingest_user(session: AsyncSession, address: str, user: UserRecord, ingested_at: datetime) -> int:
    """
    One address's unit of work. Must run inside a transaction: the user upsert comes first,
    and each worker is upserted before its stats row so the stats row references this run's worker.
    Returns the number of workers written.
    """
    await upsert_user(session, address, coerce_int(user.authorised, MAX_INT64), ingested_at)
    await insert_user_stats(session, address, user_stats_values(user), ingested_at)

    for name, worker in user.workers.items():
        values = worker_values(worker)
        db_worker = await upsert_worker(session, address, name, values, ingested_at)
        await insert_worker_stats(session, db_worker.id, values, ingested_at)

    return len(user.workers)


async def _ingest_address(db: Database, address: str, user: UserRecord, ingested_at: datetime) -> int:
    async with db.session() as session:
        async with session.begin():
            return await ingest_user(session, address, user, ingested_at)


async def run_unit(
    db: Database, address: str, user: UserRecord, ingested_at: datetime, timeout: float
) -> UserOutcome:
    """Never raises: a failure rolls back this address only and comes back as an outcome."""
    try:
        workers = await asyncio.wait_for(_ingest_address(db, address, user, ingested_at), timeout=timeout)
    except asyncio.TimeoutError:
        failure = PerAddressWriteFailure(address, f"transaction timed out after {timeout}s")
    except Exception as e:
        failure = PerAddressWriteFailure(address, f"{type(e).__name__}: {e}")
    else:
        USERS_PROCESSED.labels(status="success").inc()
        WORKERS_PROCESSED.inc(workers)
        return UserOutcome(address=address, ok=True, workers=workers)

    USERS_PROCESSED.labels(status="failure").inc()
    logger.error("user_write_failed", address=address, error=failure.cause)
    return UserOutcome(address=address, ok=False, error=failure.cause)


async def process_users(
    db: Database,
    entries: Sequence[Tuple[str, UserRecord]],
    ingested_at: datetime,
    batch_size: int = DEFAULT_BATCH_SIZE,
    timeout: float = 30.0,
) -> IngestSummary:
    """
    Ingests (address, user) pairs in snapshot order and returns who succeeded and who failed.
    """
    summary = IngestSummary(total=len(entries))
    groups = partition(entries, batch_size)

    for index, group in enumerate(groups, start=1):
        logger.info("batch_start", batch=index, of=len(groups), size=len(group))
        outcomes = await asyncio.gather(
            *(run_unit(db, address, user, ingested_at, timeout) for address, user in group)
        )
        for outcome in outcomes:
            if outcome.ok:
                summary.succeeded += 1
            else:
                summary.failures.append(FailedAddress(address=outcome.address, error=outcome.error))

    logger.info("users_processed", total=summary.total, succeeded=summary.succeeded, failed=summary.failed)
    return summary
