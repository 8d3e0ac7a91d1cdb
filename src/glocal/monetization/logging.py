"""
Structured logging for the monetization core.

Every component logs through ``structlog.get_logger(__name__)``; this module
configures the processor chain once per process (CLI invocation or Celery
worker) and lets periodic sweeps tag their log lines.
"""

import logging

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from glocal.monetization.settings import Settings, get_settings


def _service_context(settings: Settings) -> Processor:
    service = {"service": settings.app_name, "environment": settings.environment.value}

    def add_service_context(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        for key, value in service.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure stdlib logging and structlog from the observability settings.

    ``log_format`` selects JSON lines (``json``) or the console renderer.
    """
    settings = settings or get_settings()
    observability = settings.observability

    logging.basicConfig(format="%(message)s", level=observability.log_level.value)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _service_context(settings),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if observability.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_sweep_context(sweep: str, **values: object) -> None:
    """Tag every following log line in this context with the running sweep."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(sweep=sweep, **values)
