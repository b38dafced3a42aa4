import logging
import sys

import structlog


def setup_logging(level: str = "INFO") -> None:
    """
    Configures structlog to emit one JSON object per event on stdout.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str):
    # `logger` is the positional parameter of wrap_logger, so the name is bound under another key
    return structlog.get_logger(name, logger_name=name)
