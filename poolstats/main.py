import asyncio
import sys

from pydantic import ValidationError

from poolstats.core.config import get_settings
from poolstats.core.errors import PoolStatsError
from poolstats.core.logging_config import setup_logging, get_logger
from poolstats.core.metrics import push_metrics
from poolstats.services.etl_service import trigger_ingestion

logger = get_logger("main")


def main() -> int:
    """
    Ingests one snapshot. Exit 0 when the run completed (failed addresses are only logged),
    1 on a fatal error or when the pool rollup could not be written.
    """
    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging()
        logger.critical("invalid_configuration", error=str(e))
        return 1

    setup_logging(settings.LOG_LEVEL)

    try:
        summary = asyncio.run(trigger_ingestion(settings))
    except PoolStatsError as e:
        logger.critical("ingest_fatal", error_type=type(e).__name__, error=str(e))
        return 1

    if settings.PUSHGATEWAY_URL:
        try:
            push_metrics(settings.PUSHGATEWAY_URL)
        except OSError as e:
            logger.warning("metrics_push_failed", gateway=settings.PUSHGATEWAY_URL, error=str(e))

    return 0 if summary.pool_stats_recorded else 1


if __name__ == "__main__":
    sys.exit(main())
