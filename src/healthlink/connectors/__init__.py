"""
HealthLink Connectors Module

- Connector: one stateful client per remote healthcare system
- ConnectorManager: registry, health checks, compliance gating
- Transports: httpx and synthetic
- Lifecycle events and connector templates
"""

from healthlink.connectors.connector import Connector, ConnectorMetrics, HealthProbeResult
from healthlink.connectors.events import (
    ConnectorError,
    ConnectorEvent,
    ConnectorRegistered,
    ConnectorUnhealthy,
    ConnectorUnregistered,
    EventBus,
)
from healthlink.connectors.manager import ConnectorManager, HealthRecord, HealthStatus
from healthlink.connectors.templates import create_template, list_templates, validate_template
from healthlink.connectors.transport import (
    HttpTransport,
    SyntheticTransport,
    Transport,
    build_transport,
    is_synthetic_endpoint,
)

__all__ = [
    "Connector",
    "ConnectorMetrics",
    "HealthProbeResult",
    "ConnectorError",
    "ConnectorEvent",
    "ConnectorRegistered",
    "ConnectorUnhealthy",
    "ConnectorUnregistered",
    "EventBus",
    "ConnectorManager",
    "HealthRecord",
    "HealthStatus",
    "create_template",
    "list_templates",
    "validate_template",
    "HttpTransport",
    "SyntheticTransport",
    "Transport",
    "build_transport",
    "is_synthetic_endpoint",
]
