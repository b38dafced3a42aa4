import json

import pytest

from poolstats import main as cli
from poolstats.core.config import get_settings
from poolstats.ingestion import pipeline


@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("POOL_STATS_FILE", str(tmp_path / "pool_stats.json"))
    monkeypatch.setenv("CREATE_TABLES", "true")
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


def test_main_exits_zero_on_completed_run(env):
    (env / "pool_stats.json").write_text(json.dumps({
        "difficulty": 10,
        "users": {"addr1": {"workers": {"rig1": {"lastshare": 1700000000}}}},
    }))
    assert cli.main() == 0


def test_main_exits_nonzero_when_snapshot_missing(env):
    assert cli.main() == 1


def test_main_exits_nonzero_on_malformed_snapshot(env):
    (env / "pool_stats.json").write_text("[1, 2, 3]")
    assert cli.main() == 1


def test_main_exits_nonzero_on_bad_configuration(env, monkeypatch):
    monkeypatch.setenv("BATCH_SIZE", "0")
    get_settings.cache_clear()
    assert cli.main() == 1


def test_main_exits_nonzero_when_pool_stats_not_recorded(env, monkeypatch):
    async def failing_record(db, snapshot, ingested_at):
        raise RuntimeError("pool_stats table locked")

    monkeypatch.setattr(pipeline, "record_pool_stats", failing_record)
    (env / "pool_stats.json").write_text(json.dumps({"users": {"addr1": {}}}))
    assert cli.main() == 1
