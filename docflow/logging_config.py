import logging

import structlog

from docflow.config import settings


def _drop_unset(logger, method_name, event_dict):
    """Tenant middleware binds company_id=None for tenant-level calls."""
    return {key: value for key, value in event_dict.items() if value is not None}


def setup_logging():
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    # tenacity retry hooks and SQLAlchemy log through the stdlib
    logging.basicConfig(format="%(levelname)s %(name)s %(message)s", level=level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DEBUG else logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _drop_unset,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer()
            if settings.ENVIRONMENT == "development"
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
