"""
Structured Logging with Structlog.

Every entry carries the service name and version. Request handlers bind the
caller and, for payment flows, the transaction being reconciled, so a single
purchase can be followed from checkout through webhook to premium grant.
"""

import logging
import sys
from typing import Any
from uuid import UUID

import structlog
from structlog.types import EventDict, Processor

from studycards.config import settings

# Correlation fields; always rendered as plain strings
IDENTIFIER_FIELDS = (
    "request_id",
    "user_id",
    "transaction_id",
    "gateway_payment_id",
    "set_id",
    "flashcard_id",
)


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level context to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def stringify_identifiers(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Render UUID correlation fields as bare strings instead of ``UUID('...')``."""
    for field in IDENTIFIER_FIELDS:
        value = event_dict.get(field)
        if isinstance(value, UUID):
            event_dict[field] = str(value)
    return event_dict


def setup_logging() -> None:
    """
    Configure structured logging with structlog.

    JSON entries look like:
    {
        "event": "payment_webhook_reconciled",
        "level": "info",
        "timestamp": "2026-10-17T12:00:00.123456Z",
        "logger": "studycards.services.webhooks",
        "service": "studycards-api",
        "version": "0.1.0",
        "request_id": "req-123",
        "transaction_id": "5f0c...",
        "gateway_status": "paid",
        ...
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        stringify_identifiers,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

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
    Bind correlation fields for the duration of a block.

    Fields left as None are not bound.

    Usage:
        with log_context(user_id=user.user_id, transaction_id=transaction_id):
            logger.info("upgrade_confirmation_started")
    """

    def __init__(
        self,
        request_id: str | None = None,
        user_id: str | None = None,
        transaction_id: UUID | str | None = None,
        **extra: Any,
    ) -> None:
        fields = {
            "request_id": request_id,
            "user_id": user_id,
            "transaction_id": transaction_id,
            **extra,
        }
        self.context = {key: value for key, value in fields.items() if value is not None}

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
