"""
Pool-wide rollup row and top-N user selection.
"""
from datetime import datetime
from typing import Any, Dict, List, Tuple

from poolstats.core.database import Database
from poolstats.core.logging_config import get_logger
from poolstats.db.models import MAX_INT32, MAX_INT64, PoolStats
from poolstats.ingestion.normalizer import (
    coerce_float, coerce_int, normalize_hashrate, resolve_pool_hashrate, resolve_pool_share_rate,
    unix_to_datetime,
)
from poolstats.schemas.snapshot import PoolSnapshot, UserRecord

logger = get_logger("pool_stats")

DEFAULT_TOP_N = 10
DEFAULT_TOP_METRIC = "hashrate_1d"


def build_pool_stats(snapshot: PoolSnapshot, ingested_at: datetime) -> Dict[str, Any]:
    return {
        "runtime": coerce_int(snapshot.start_time, MAX_INT64),
        "users": coerce_int(snapshot.num_users, MAX_INT32),
        "workers": coerce_int(snapshot.num_workers, MAX_INT32),
        "idle": coerce_int(snapshot.num_idle_users, MAX_INT32),
        "disconnected": 0,
        **resolve_pool_hashrate(snapshot),
        "diff": coerce_float(snapshot.difficulty),
        "accepted": coerce_int(snapshot.accepted),
        "rejected": coerce_int(snapshot.rejected),
        "bestshare": coerce_float(snapshot.bestshare),
        **resolve_pool_share_rate(snapshot),
        "snapshot_time": unix_to_datetime(snapshot.lastupdate) if snapshot.lastupdate is not None else None,
        "timestamp": ingested_at,
    }


async def record_pool_stats(db: Database, snapshot: PoolSnapshot, ingested_at: datetime) -> PoolStats:
    """
    Inserts the rollup in its own transaction, independent of how the users fare.
    """
    row = PoolStats(**build_pool_stats(snapshot, ingested_at))
    async with db.session() as session:
        async with session.begin():
            session.add(row)
    logger.info("pool_stats_recorded", id=row.id, users=row.users, workers=row.workers, hashrate1d=str(row.hashrate1d))
    return row


def select_top_users(
    snapshot: PoolSnapshot, limit: int = DEFAULT_TOP_N, metric: str = DEFAULT_TOP_METRIC
) -> List[Tuple[str, UserRecord]]:
    """
    The `limit` users with the highest `metric` window, highest first.
    sorted() is stable, so equal values keep snapshot order.
    """
    def score(entry: Tuple[str, UserRecord]) -> int:
        rates = entry[1].computed_hash_rate
        return normalize_hashrate(getattr(rates, metric, None) if rates is not None else None)

    ranked = sorted(snapshot.users.items(), key=score, reverse=True)
    return ranked[:limit]
