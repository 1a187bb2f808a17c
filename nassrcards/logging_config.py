"""
Logging setup shared by the server, the stores and the load client.

Log lines are structlog events: a snake_case event name plus key/value
context, e.g. ``log.info("order_created", order_id=..., player_id=...)``.
Set ``LOG_JSON=1`` for one JSON object per line (container friendly), and
``LOG_LEVEL`` to change verbosity.
"""
import logging
import os
import sys

import structlog


def setup_logging(level: str | None = None, json: bool | None = None) -> None:
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json is None:
        json = os.getenv("LOG_JSON", "0").lower() in ("1", "true", "yes")

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if json else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
