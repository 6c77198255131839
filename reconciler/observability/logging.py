"""
Structured logging for the reconciler.

Events are snake_case names with keyword fields, rendered as JSON (default)
or as colored console output for local runs and tests. Credential-bearing
fields are masked before rendering.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from reconciler.config import settings

REDACTED = "***"

SENSITIVE_KEYS = frozenset(
    {
        "auth_token",
        "access_token",
        "email_token",
        "purchase_token",
        "password",
        "signature",
    }
)


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every entry with the service name and version."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.service_version
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask token, password and signature fields."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def _build_processors(log_format: str, debug: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.ExceptionRenderer() if debug else structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging() -> None:
    """
    Route structlog through stdlib logging at the configured level.

    A JSON entry looks like:
    {
        "event": "import_job_finished",
        "level": "info",
        "timestamp": "2025-01-08T12:00:00.123456Z",
        "logger": "reconciler.importing.importer",
        "service": "reconciler",
        "version": "0.1.0",
        "job_id": "6f1c...",
        "saved": 12,
        "skipped": 3
    }
    """
    level = getattr(logging, settings.log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=_build_processors(settings.log_format, debug=level == logging.DEBUG),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("store_login_succeeded", status=subscription.status)
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind fields to every log entry emitted inside the block.

    Usage:
        with log_context(job_id=job_id):
            logger.info("import_item_saved")  # carries job_id
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
