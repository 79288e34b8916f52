"""
Structured Logging with Structlog.

Every entry carries the service name and version plus whatever request
context is bound (request_id from the logging middleware).
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from civic_rewards.config import settings

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", settings.service_name)
    event_dict.setdefault("version", settings.api_version)
    return event_dict


def _renderer(log_format: str) -> Processor:
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog on top of the stdlib root logger.

    JSON output (the default) looks like:
        {"event": "report_resolved", "level": "info", "logger": "civic_rewards.services.reports",
         "service": "civic-rewards-api", "request_id": "...", "reward": 150, ...}
    """
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level_name, force=True)
    if level_name != "DEBUG":
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(log_format or settings.log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger bound to `name`."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind key/value pairs to every log entry emitted inside the block.

        with log_context(request_id=request_id):
            logger.info("request_started")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> "log_context":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context)
