"""
Find-or-create for users and workers as a single INSERT ... ON CONFLICT DO UPDATE ... RETURNING.
Runs in the caller's transaction; no separate existence check, so there is no window for a
concurrent insert of the same natural key.
"""
from datetime import datetime
from typing import Any, Dict

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from poolstats.core.errors import ConfigError
from poolstats.db.models import User, Worker

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_insert(session: AsyncSession, model):
    dialect = session.bind.dialect.name
    try:
        return _UPSERT_DIALECTS[dialect](model)
    except KeyError:
        raise ConfigError(f"no upsert support for dialect {dialect!r}") from None


async def upsert_user(session: AsyncSession, address: str, authorised: int, seen_at: datetime) -> User:
    stmt = upsert_insert(session, User).values([{
        "address": address,
        "authorised": authorised,
        "is_active": True,
        "updated_at": seen_at,
    }])
    stmt = stmt.on_conflict_do_update(
        index_elements=["address"],
        set_={
            "authorised": stmt.excluded.authorised,
            "is_active": True,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    result = await session.scalars(
        stmt.returning(User), execution_options={"populate_existing": True}
    )
    return result.one()


async def upsert_worker(
    session: AsyncSession, address: str, name: str, values: Dict[str, Any], seen_at: datetime
) -> Worker:
    """
    values: the worker's metric columns (hashrates, shares, best_share, best_ever, last_update).
    """
    stmt = upsert_insert(session, Worker).values([{
        "user_address": address,
        "name": name,
        "updated_at": seen_at,
        **values,
    }])
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_address", "name"],
        set_={
            **{column: stmt.excluded[column] for column in values},
            "updated_at": stmt.excluded.updated_at,
        },
    )
    result = await session.scalars(
        stmt.returning(Worker), execution_options={"populate_existing": True}
    )
    return result.one()
