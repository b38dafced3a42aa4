import json

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from poolstats.core.config import Settings
from poolstats.core.database import Database
# Explicit import to ensure metadata is populated
from poolstats.db.models import Base
from poolstats.db.init_db import init_db

# Database-backed tests run against a SQLite file so they need no PostgreSQL server.
# pytest-asyncio runs in 'auto' mode (see pyproject.toml), so async fixtures need no marker.


@pytest.fixture
def write_snapshot(tmp_path):
    def _write(document, name="pool_stats.json"):
        path = tmp_path / name
        path.write_text(json.dumps(document), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        values = {
            "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'poolstats.db'}",
            "POOL_STATS_FILE": str(tmp_path / "pool_stats.json"),
            "TRANSACTION_TIMEOUT_SECONDS": 10.0,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make


@pytest.fixture
async def db(make_settings):
    database = Database(make_settings())
    await init_db(database)
    yield database
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await database.dispose()


@pytest.fixture
def fetch_all(db):
    async def _fetch(model, *criteria):
        async with db.session() as session:
            result = await session.execute(select(model).where(*criteria))
            return result.scalars().all()
    return _fetch


@pytest.fixture
def count_rows(db):
    async def _count(model):
        async with db.session() as session:
            return await session.scalar(select(func.count()).select_from(model))
    return _count


def user_doc(hashrate_1d=1.0, workers=None, **fields):
    """A user record in the pool's snapshot format."""
    doc = {
        "authorised": 1700000000,
        "shares": 100,
        "bestshare": 12.5,
        "bestever": 40,
        "computed_hash_rate": {"hashrate_1d": hashrate_1d},
        "workers": workers if workers is not None else {},
    }
    doc.update(fields)
    return doc


@pytest.fixture
def user_factory():
    return user_doc
