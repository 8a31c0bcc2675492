"""
HealthLink Observability Module

- Structured logging (structlog)
- Secret scrubbing for log sinks
"""

from healthlink.observability.logging import configure_logging, secret_scrubbing_processor

__all__ = [
    "configure_logging",
    "secret_scrubbing_processor",
]
