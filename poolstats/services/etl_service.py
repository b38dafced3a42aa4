from poolstats.core.config import Settings
from poolstats.core.database import Database
from poolstats.db.init_db import init_db
from poolstats.ingestion.pipeline import run_ingestion
from poolstats.schemas.summary import RunSummary


async def trigger_ingestion(settings: Settings) -> RunSummary:
    """
    Owns the storage handle for one run: opens it, ingests, and always disposes it,
    including when the run fails.
    """
    db = Database(settings)
    try:
        if settings.CREATE_TABLES:
            await init_db(db)
        return await run_ingestion(db, settings)
    finally:
        await db.dispose()
