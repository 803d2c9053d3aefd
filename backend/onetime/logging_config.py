"""
structlog setup for the secret service.

Events go to stdout as JSON lines (log_format="json") or as coloured console
output. Plaintext, passphrases and share keys must never reach a log line;
redact_sensitive_fields masks them if a caller binds one by mistake.
"""

import logging
import sys

import structlog

from onetime.config import Settings

REDACTED = "[redacted]"
SENSITIVE_FIELDS = frozenset(
    {"secret", "plaintext", "passphrase", "key", "encrypted_content", "encryption_key", "url"}
)


def redact_sensitive_fields(logger, method_name, event_dict):
    for field in SENSITIVE_FIELDS.intersection(event_dict):
        event_dict[field] = REDACTED
    return event_dict


def setup_logging(settings: Settings) -> None:
    """Configure structlog and route stdlib loggers to the same stream."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            redact_sensitive_fields,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # APScheduler and SQLAlchemy log through stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
