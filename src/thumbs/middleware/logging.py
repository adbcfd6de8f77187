"""structlog setup shared by the HTTP API and the realtime endpoint."""

import logging

import structlog
from structlog.types import EventDict, WrappedLogger

from thumbs.config import Settings

# Chatty per-frame loggers from the ASGI server and websocket stack
_QUIET_LOGGERS = ("uvicorn.access", "websockets", "websockets.protocol")


def _service_fields(environment: str, version: str) -> structlog.types.Processor:
    def add_service(_logger: WrappedLogger, _method: str, event: EventDict) -> EventDict:
        event.setdefault("service", "thumbs-api")
        event.setdefault("env", environment)
        event.setdefault("version", version)
        return event

    return add_service


def setup_logging(settings: Settings) -> None:
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    if settings.log_format == "json":
        processors += [
            _service_fields(settings.environment, settings.app_version),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    if settings.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
