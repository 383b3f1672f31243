import sys
import logging
from typing import Any

import structlog

from finops.shared.core.config import get_settings

REDACTED = "[REDACTED]"

SENSITIVE_FIELDS = frozenset({
    "access_token", "refresh_token", "token", "authorization",
    "email", "user_email", "password", "secret", "api_key",
})

# Client libraries that log every HTTP round trip at INFO
CHATTY_LOGGERS = ("google.auth", "google.api_core", "urllib3", "httpx", "httpcore")


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if key in SENSITIVE_FIELDS else _scrub(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(item) for item in value)
    return value


def sensitive_redactor(logger, method_name, event_dict):
    """
    Mask delegated OAuth material and personal identifiers, at any nesting depth,
    before the event reaches a renderer.
    """
    return _scrub(event_dict)


def setup_logging(settings=None):
    settings = settings or get_settings()
    min_level = logging.DEBUG if settings.DEBUG else logging.INFO
    renderer = structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # run_id / user_id
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            sensitive_redactor,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=min_level)
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(min_level, logging.WARNING))
