"""Logging configuration for the Orders service.

Log records carry the request context bound by the HTTP middleware
(``request_id``, ``method``, ``path``) plus whatever the domain code passes
as keyword arguments (``order_id``, ``gateway_refund_id``, amounts in cents).
"""

import logging
import os
import sys
import uuid

import structlog

from orders.config import get_environment

_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

# Renders JSON for log shipping; everything else gets the console renderer.
_JSON_ENVIRONMENTS = {"production", "staging"}


def get_log_level() -> str:
    """LOG_LEVEL wins; otherwise derived from the environment."""
    return os.getenv("LOG_LEVEL", _LEVELS.get(get_environment(), "INFO")).upper()


def _add_service(logger, method_name, event_dict):  # noqa: ARG001
    event_dict.setdefault("service", "orders")
    return event_dict


def setup_stdlib_logging() -> None:
    log_level = get_log_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [logging.StreamHandler(sys.stdout)]

    # Protean logs every command and UoW at INFO
    logging.getLogger("protean").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def setup_structlog() -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if get_environment() in _JSON_ENVIRONMENTS:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging() -> None:
    setup_stdlib_logging()
    setup_structlog()


def bind_request_context(method: str, path: str, request_id: str | None = None) -> str:
    """Bind per-request fields to every log line of the request; returns the request id."""
    request_id = request_id or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)
    return request_id


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
