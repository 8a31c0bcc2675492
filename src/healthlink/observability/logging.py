"""
Structured Logging

Features:
- JSON-formatted logs
- Log levels
- Secret scrubbing
- Context propagation
"""

import logging
import sys
from typing import Any

import structlog

from healthlink.config import get_settings


# Keys whose values never reach a log sink
SECRET_KEYS = frozenset({
    "token",
    "access_token",
    "refresh_token",
    "client_secret",
    "password",
    "key",
    "api_key",
    "master_secret",
    "authorization",
    "authentication",
    "plaintext",
})

REDACTED = "[REDACTED]"


def secret_scrubbing_processor(logger, method_name, event_dict):
    """Redact secret-bearing keys from the event dict."""
    for key in list(event_dict.keys()):
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(event_dict[key], dict):
            event_dict[key] = _scrub_mapping(event_dict[key])
    return event_dict


def _scrub_mapping(value: dict[str, Any]) -> dict[str, Any]:
    scrubbed = {}
    for k, v in value.items():
        if isinstance(k, str) and k.lower() in SECRET_KEYS:
            scrubbed[k] = REDACTED
        elif isinstance(v, dict):
            scrubbed[k] = _scrub_mapping(v)
        else:
            scrubbed[k] = v
    return scrubbed


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; defaults to HEALTHLINK_LOG_LEVEL
        json_output: Render JSON lines; defaults to HEALTHLINK_LOG_JSON
    """
    settings = get_settings().app
    level = (level or settings.log_level).upper()
    json_output = settings.log_json if json_output is None else json_output

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            secret_scrubbing_processor,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
