import pytest
from datetime import datetime
from sqlalchemy import update

from poolstats.core.database import Database
from poolstats.core.errors import ConnectionFailure, SnapshotMalformed, SnapshotUnavailable
from poolstats.db.models import IngestionRun, PoolStats, User, UserStats, Worker, WorkerStats
from poolstats.ingestion import coordinator, pipeline
from poolstats.ingestion.pipeline import run_ingestion
from poolstats.ingestion.pool_stats import build_pool_stats, select_top_users
from poolstats.schemas.snapshot import PoolSnapshot

from conftest import user_doc

SCENARIO = {
    "difficulty": 1000,
    "accepted": 5,
    "users": {
        "addr1": {
            "authorised": 1,
            "computed_hash_rate": {"hashrate_1d": 2.5},
            "workers": {
                "rig1": {"computed_hash_rate": {"hashrate_1d": 2.5}, "lastshare": 1700000000},
            },
        },
    },
}

SCALED_2_5 = round(2.5 * 2 ** 32)


async def test_scenario_single_user_single_worker(db, make_settings, write_snapshot, fetch_all):
    write_snapshot(SCENARIO)

    summary = await run_ingestion(db, make_settings())

    assert summary.status == "success"
    assert summary.users.succeeded == 1

    [pool] = await fetch_all(PoolStats)
    assert pool.diff == 1000
    assert pool.accepted == 5
    assert pool.disconnected == 0
    # No top-level rollup: falls back to the first user's
    assert pool.hashrate1d == SCALED_2_5

    [user] = await fetch_all(User)
    assert user.address == "addr1"
    assert user.is_active is True
    assert user.authorised == 1

    [user_stats] = await fetch_all(UserStats)
    assert user_stats.user_address == "addr1"
    assert user_stats.hashrate1d == SCALED_2_5
    assert user_stats.worker_count == 1
    assert user_stats.last_share == 1700000000

    [worker] = await fetch_all(Worker)
    assert (worker.user_address, worker.name) == ("addr1", "rig1")
    assert worker.hashrate1d == SCALED_2_5

    [worker_stats] = await fetch_all(WorkerStats)
    assert worker_stats.worker_id == worker.id
    assert worker_stats.hashrate1d == SCALED_2_5
    assert worker_stats.last_update.replace(tzinfo=None) == datetime(2023, 11, 14, 22, 13, 20)

    [run] = await fetch_all(IngestionRun)
    assert run.status == "success"
    assert run.users_total == 1


async def test_rerun_keeps_identity_and_appends_history(db, make_settings, write_snapshot, fetch_all, count_rows):
    write_snapshot(SCENARIO)
    settings = make_settings()

    await run_ingestion(db, settings)

    updated = {**SCENARIO, "users": {"addr1": {**SCENARIO["users"]["addr1"], "authorised": 7}}}
    updated["users"]["addr1"]["workers"] = {
        "rig1": {"computed_hash_rate": {"hashrate_1d": 5.0}, "lastshare": 1700000600},
    }
    write_snapshot(updated)
    await run_ingestion(db, settings)

    assert await count_rows(User) == 1
    assert await count_rows(Worker) == 1
    assert await count_rows(UserStats) == 2
    assert await count_rows(WorkerStats) == 2
    assert await count_rows(PoolStats) == 2

    [user] = await fetch_all(User)
    assert user.authorised == 7
    [worker] = await fetch_all(Worker)
    assert worker.hashrate1d == 5 * 2 ** 32
    assert {s.worker_id for s in await fetch_all(WorkerStats)} == {worker.id}


async def test_unchanged_snapshot_still_appends_history(db, make_settings, write_snapshot, count_rows):
    write_snapshot(SCENARIO)
    settings = make_settings()

    await run_ingestion(db, settings)
    await run_ingestion(db, settings)

    assert await count_rows(User) == 1
    assert await count_rows(UserStats) == 2


async def test_pool_stats_falls_back_to_first_worker(db, make_settings, write_snapshot, fetch_all):
    write_snapshot({
        "users": {"addr1": {"workers": {"rig1": {"computed_hash_rate": {"hashrate_1hr": 3.0}}}}},
    })

    await run_ingestion(db, make_settings())

    [pool] = await fetch_all(PoolStats)
    assert pool.hashrate1hr == 3 * 2 ** 32
    assert pool.hashrate1d == 0


def test_build_pool_stats_maps_snapshot_fields():
    snapshot = PoolSnapshot.model_validate({
        "start_time": 1699990000,
        "lastupdate": 1700000000,
        "num_users": "4",
        "num_workers": 9,
        "num_idle_users": 1,
        "rejected": 2,
        "bestshare": 1234.5,
        "computed_hashrate": {"hashrate_15m": 1.0},
        "computed_share_rate": {"shares_per_second_5m": 0.25},
    })
    row = build_pool_stats(snapshot, datetime(2024, 1, 1))
    assert row["runtime"] == 1699990000
    assert row["users"] == 4
    assert row["workers"] == 9
    assert row["idle"] == 1
    assert row["rejected"] == 2
    assert row["bestshare"] == 1234.5
    assert row["hashrate15m"] == 2 ** 32
    assert row["sps5m"] == 0.25
    assert row["snapshot_time"].timestamp() == 1700000000
    assert row["timestamp"] == datetime(2024, 1, 1)


def test_select_top_users_ranks_by_metric():
    rates = [3.0, 14.0, 1.0, 9.0, 12.0, 0.5, 7.0, 11.0, 2.0, 13.0, 5.0, 10.0, 8.0, 6.0, 4.0]
    users = {f"addr{i:02d}": user_doc(hashrate_1d=rate) for i, rate in enumerate(rates)}
    snapshot = PoolSnapshot.model_validate({"users": users})

    top = select_top_users(snapshot, limit=10)

    expected = sorted(users, key=lambda a: users[a]["computed_hash_rate"]["hashrate_1d"], reverse=True)[:10]
    assert [address for address, _ in top] == expected
    assert len(top) == 10


def test_select_top_users_keeps_snapshot_order_on_ties():
    snapshot = PoolSnapshot.model_validate({"users": {
        "c": user_doc(hashrate_1d=1.0),
        "a": user_doc(hashrate_1d=2.0),
        "b": user_doc(hashrate_1d=1.0),
        "d": {"workers": {}},
    }})
    assert [a for a, _ in select_top_users(snapshot, limit=3)] == ["a", "c", "b"]
    assert [a for a, _ in select_top_users(snapshot, limit=10, metric="hashrate_7d")] == ["c", "a", "b", "d"]


async def test_top_mode_ingests_only_top_users(db, make_settings, write_snapshot, fetch_all):
    users = {f"addr{i:02d}": user_doc(hashrate_1d=float(i)) for i in range(15)}
    write_snapshot({"users": users})

    summary = await run_ingestion(db, make_settings(INGEST_MODE="top"))

    assert summary.users.total == 10
    stored = {u.address for u in await fetch_all(User)}
    assert stored == {f"addr{i:02d}" for i in range(5, 15)}
    assert len(await fetch_all(PoolStats)) == 1


async def test_partial_run_is_recorded(db, make_settings, write_snapshot, fetch_all, monkeypatch):
    real_ingest = coordinator.ingest_user

    async def ingest(session, address, user, ingested_at):
        if address == "broken":
            raise ValueError("bad row")
        return await real_ingest(session, address, user, ingested_at)

    monkeypatch.setattr(coordinator, "ingest_user", ingest)
    write_snapshot({"users": {"fine": user_doc(), "broken": user_doc()}})

    summary = await run_ingestion(db, make_settings())

    assert summary.status == "partial"
    assert summary.pool_stats_recorded is True
    [run] = await fetch_all(IngestionRun)
    assert run.status == "partial"
    assert run.users_failed == 1
    assert run.error_log["users"] == [{"address": "broken", "error": "ValueError: bad row"}]


async def test_missing_snapshot_is_fatal(db, make_settings, count_rows):
    with pytest.raises(SnapshotUnavailable):
        await run_ingestion(db, make_settings())
    assert await count_rows(PoolStats) == 0


async def test_malformed_snapshot_is_fatal(db, make_settings, write_snapshot, count_rows):
    write_snapshot({"users": ["addr1"]})
    with pytest.raises(SnapshotMalformed):
        await run_ingestion(db, make_settings())
    assert await count_rows(User) == 0


async def test_unreachable_database_is_fatal(make_settings, write_snapshot, tmp_path):
    write_snapshot(SCENARIO)
    settings = make_settings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'x.db'}")
    database = Database(settings)
    try:
        with pytest.raises(ConnectionFailure):
            await run_ingestion(database, settings)
    finally:
        await database.dispose()


def test_build_pool_stats_zeroes_counts_beyond_column_range():
    snapshot = PoolSnapshot.model_validate({"start_time": 10 ** 20, "num_users": 2 ** 31, "num_workers": 12})
    row = build_pool_stats(snapshot, datetime(2024, 1, 1))
    assert row["runtime"] == 0
    assert row["users"] == 0
    assert row["workers"] == 12


async def test_pool_stats_failure_leaves_user_writes_committed(db, make_settings, write_snapshot, fetch_all, monkeypatch):
    async def failing_record(db, snapshot, ingested_at):
        raise RuntimeError("pool_stats table locked")

    monkeypatch.setattr(pipeline, "record_pool_stats", failing_record)
    write_snapshot(SCENARIO)

    summary = await run_ingestion(db, make_settings())

    assert summary.pool_stats_recorded is False
    assert summary.status == "failure"
    assert summary.users.succeeded == 1
    assert await fetch_all(PoolStats) == []
    assert [u.address for u in await fetch_all(User)] == ["addr1"]
    assert len(await fetch_all(WorkerStats)) == 1
    [run] = await fetch_all(IngestionRun)
    assert run.status == "failure"
    assert run.error_log["pool_stats"] == "RuntimeError: pool_stats table locked"


async def test_rerun_reactivates_user_cleared_externally(db, make_settings, write_snapshot, fetch_all):
    write_snapshot(SCENARIO)
    settings = make_settings()
    await run_ingestion(db, settings)

    async with db.session() as session:
        async with session.begin():
            await session.execute(update(User).where(User.address == "addr1").values(is_active=False))
    [user] = await fetch_all(User)
    assert user.is_active is False

    await run_ingestion(db, settings)

    [user] = await fetch_all(User)
    assert user.is_active is True
