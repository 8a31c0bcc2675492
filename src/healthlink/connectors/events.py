"""
Connector Events

Typed lifecycle events and a small in-process bus.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
import inspect

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConnectorEvent:
    connector_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ConnectorRegistered(ConnectorEvent):
    connector_type: str | None = None
    actor: str | None = None


@dataclass(frozen=True)
class ConnectorUnregistered(ConnectorEvent):
    actor: str | None = None


@dataclass(frozen=True)
class ConnectorUnhealthy(ConnectorEvent):
    """A connector moved from healthy (or unknown) to unhealthy."""
    error: str | None = None
    status_code: int | None = None


@dataclass(frozen=True)
class ConnectorError(ConnectorEvent):
    """A remote call through the connector failed."""
    method: str | None = None
    error: str | None = None
    status_code: int | None = None


Listener = Callable[[ConnectorEvent], Any]


class EventBus:
    """
    Publish/subscribe for connector events.

    Subscribing to a base class receives its subclasses too. Listeners
    may be plain callables or coroutine functions; a failing listener is
    logged and skipped.
    """

    def __init__(self):
        self._listeners: defaultdict[type, list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type[ConnectorEvent], listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event_type, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    async def publish(self, event: ConnectorEvent) -> None:
        for event_type in type(event).__mro__:
            for listener in list(self._listeners.get(event_type, ())):
                try:
                    result = listener(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(
                        "Event listener failed",
                        event_type=type(event).__name__,
                        connector_id=event.connector_id,
                        error=str(e),
                    )
