"""
Structured logging for the ledger service (structlog over stdlib logging).

Log lines are keyed by event name ("view_settled", "promotion_cancelled",
"realtime_resync_sent") with ids passed as strings. Production emits one
JSON object per line; LOG_FORMAT=console gives a readable local view.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from vidgro.config import settings

# Libraries whose INFO chatter drowns the ledger events
_QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "uvicorn.access")


def stamp_service(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def setup_logging() -> None:
    """
    Route structlog through stdlib logging on stdout.

    A settlement in JSON mode looks like:
        {"event": "view_settled", "level": "info", "logger": "vidgro.services.settlement",
         "service": "vidgro-ledger", "request_id": "9f1c...", "outcome": "credited",
         "coins_earned": 45, "timestamp": "2026-10-17T08:00:00.000000Z"}
    """
    level = getattr(logging, settings.log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    if level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        stamp_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Attach fields to every log line emitted inside the block.

    The HTTP middleware uses it for request_id, so a settlement's
    "view_rejected" line can be joined to its access log entry.
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.fields)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.fields)
