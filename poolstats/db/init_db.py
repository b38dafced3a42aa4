from poolstats.core.database import Database
from poolstats.db.models import Base


async def init_db(db: Database):
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
