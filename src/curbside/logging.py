"""
Structured logging for the billing engine.

Every module logs through structlog. Events emitted inside a transactional
unit carry that unit's ``operation`` from context variables, and
money-moving changes are also written to the ``audit`` logger.
"""

import logging
from typing import Any

import structlog

from curbside.settings import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structlog over the standard library logger.

    Called once by the host process; the library never configures logging on import.
    """
    settings = settings or get_settings()
    logging.basicConfig(format="%(message)s", level=settings.observability.log_level.value)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.observability.enable_correlation_ids:
        processors.insert(
            1,
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.THREAD_NAME]
            ),
        )

    if settings.observability.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=not settings.is_testing,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def get_audit_logger() -> structlog.stdlib.BoundLogger:
    """Logger for audit records (state changes and money movements)."""
    return structlog.get_logger("audit")


def log_audit_event(
    action: str,
    category: str,
    customer_id: str | None = None,
    property_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Log an audit event as a structured log entry.

    Money-moving and state-changing billing operations are recorded here.
    """
    audit_logger = get_audit_logger()

    audit_logger.info(
        action,
        audit_category=category,
        audit_customer_id=customer_id,
        audit_property_id=property_id,
        audit_resource_type=resource_type,
        audit_resource_id=resource_id,
        **kwargs,
    )
