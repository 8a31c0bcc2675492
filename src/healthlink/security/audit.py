"""
HIPAA Audit Records

The connector core decides *that* an event must be audited and *what*
it contains. Delivery belongs to an external sink:
- AuditSink protocol for delivery
- Structured-log sink (default)
- In-memory sink for embedding and tests
- Delivery failures never fail the originating operation
"""

from typing import Any, Optional, Protocol, runtime_checkable
from datetime import datetime, timezone
from enum import Enum
import uuid

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


# =============================================================================
# Audit Actions
# =============================================================================

class AuditAction(str, Enum):
    """Connector lifecycle and data actions."""
    CONNECTOR_REGISTERED = "CONNECTOR_REGISTERED"
    CONNECTOR_REGISTRATION_FAILED = "CONNECTOR_REGISTRATION_FAILED"
    CONNECTOR_UNREGISTERED = "CONNECTOR_UNREGISTERED"
    CONNECTOR_UNREGISTRATION_FAILED = "CONNECTOR_UNREGISTRATION_FAILED"
    COMPLIANCE_VALIDATED = "COMPLIANCE_VALIDATED"
    CONFIG_SAVED = "CONFIG_SAVED"
    CONFIG_DELETED = "CONFIG_DELETED"


class AuditOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


WEB_CONNECTOR = "WEB_CONNECTOR"
DATA_TRANSMISSION = "DATA_TRANSMISSION"


def remote_call_action(method: str) -> str:
    """Action name recorded for a remote call."""
    return f"REMOTE_CALL_{method.upper()}"


# =============================================================================
# Audit Record
# =============================================================================

class AuditRecord(BaseModel):
    """A single audit tuple handed to the sink."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    actor: str
    action: str
    resource_type: str = WEB_CONNECTOR
    resource_id: str
    outcome: AuditOutcome
    detail: Optional[str | dict[str, Any]] = None

    def to_log_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "audit_id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "outcome": self.outcome.value,
            "detail": self.detail,
        }


# =============================================================================
# Sinks
# =============================================================================

@runtime_checkable
class AuditSink(Protocol):
    """External audit delivery."""

    async def record(self, record: AuditRecord) -> None:
        ...


class StructlogAuditSink:
    """Writes audit records to the structured log stream."""

    def __init__(self, logger_name: str = "healthlink.audit"):
        self._logger = structlog.get_logger(logger_name)

    async def record(self, record: AuditRecord) -> None:
        self._logger.info("audit_event", **record.to_log_dict())


class MemoryAuditSink:
    """Keeps audit records in memory, newest last."""

    def __init__(self, max_records: int = 10000):
        self.records: list[AuditRecord] = []
        self._max_records = max_records

    async def record(self, record: AuditRecord) -> None:
        self.records.append(record)
        if len(self.records) > self._max_records:
            self.records = self.records[-self._max_records:]

    def find(self, action: str | None = None, resource_id: str | None = None) -> list[AuditRecord]:
        return [
            r for r in self.records
            if (action is None or r.action == action)
            and (resource_id is None or r.resource_id == resource_id)
        ]


# =============================================================================
# Recorder
# =============================================================================

class AuditRecorder:
    """
    Builds audit records and hands them to the sink.

    Never raises: a sink failure is logged locally and the
    originating operation continues.
    """

    def __init__(self, sink: AuditSink | None = None):
        self.sink = sink

    async def log(
        self,
        actor: str,
        action: str,
        resource_id: str,
        outcome: AuditOutcome,
        detail: str | dict[str, Any] | None = None,
        resource_type: str = WEB_CONNECTOR,
    ) -> AuditRecord | None:
        if self.sink is None:
            return None

        record = AuditRecord(
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            outcome=outcome,
            detail=detail,
        )

        try:
            await self.sink.record(record)
        except Exception as e:
            logger.error(
                "Audit delivery failed",
                audit_id=record.id,
                action=action,
                resource_id=resource_id,
                error=str(e),
            )
        return record
