"""
structlog setup for the booking service.

Every ledger, booking and template event is logged as a snake_case event name
with keyword context. The request middleware binds ``request_id``, and the auth
dependency binds ``actor_id``/``actor_role``, so a credit movement can always
be traced back to the request and the account that caused it.
"""

import logging
import sys
from typing import Any

import structlog

from tutorbook.core.config import get_settings

# Keys whose values must never reach the log stream
SENSITIVE_KEYS = frozenset({"password", "hashed_password", "access_token", "token", "authorization"})
REDACTED = "[redacted]"

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncio")


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def bind_actor(user_id: int, role: str) -> None:
    """Attach the authenticated account to the rest of the request's events."""
    structlog.contextvars.bind_contextvars(actor_id=user_id, actor_role=role)


def _renderer(environment: str):
    if environment == "production":
        return structlog.processors.JSONRenderer()
    # tests capture stdout; colour codes only get in the way there
    return structlog.dev.ConsoleRenderer(colors=environment == "development")


def setup_logging() -> None:
    settings = get_settings()

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.ENVIRONMENT == "production":
        processors.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings.ENVIRONMENT),
            ]
        )
    )

    root_logger = logging.getLogger()
    # the app lifespan may run more than once per process (tests, reloads)
    for existing in list(root_logger.handlers):
        if isinstance(existing.formatter, structlog.stdlib.ProcessorFormatter):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if settings.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
