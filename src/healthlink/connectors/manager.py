"""
Healthcare Connector Manager

Owns the connector registry and coordinates:
- Registration: validate -> compliance check -> connection test -> store -> insert
- Remote calls: health refresh -> data compliance -> dispatch -> audit
- Unregistration with draining disconnect
- Recurring health checks, probing every connector concurrently
- Lifecycle events and audit records
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable
import asyncio

import structlog

from healthlink.compliance.models import OverallCompliance
from healthlink.compliance.validator import ComplianceValidator
from healthlink.config import Settings, get_settings
from healthlink.connectors.connector import Connector, HealthProbeResult
from healthlink.connectors.events import (
    ConnectorError,
    ConnectorRegistered,
    ConnectorUnhealthy,
    ConnectorUnregistered,
    EventBus,
)
from healthlink.connectors.transport import Transport, build_transport
from healthlink.errors import (
    ComplianceViolation,
    HealthlinkError,
    NotFoundError,
    ValidationError,
)
from healthlink.locks import KeyedLocks
from healthlink.models import ConnectorConfig, parse_connector_config
from healthlink.security.audit import (
    DATA_TRANSMISSION,
    AuditAction,
    AuditOutcome,
    AuditRecorder,
    AuditSink,
    StructlogAuditSink,
    remote_call_action,
)
from healthlink.security.encryption import CONNECTOR_PAYLOAD_CONTEXT, EncryptionService
from healthlink.storage.config_store import ConfigStore, StoredConfigSummary

logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    ERROR = "error"


@dataclass
class HealthRecord:
    """Latest health-check outcome for one connector."""
    status: HealthStatus
    last_check: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: dict[str, Any] = field(default_factory=dict)

    def is_stale(self, max_age_seconds: float) -> bool:
        age = (datetime.now(timezone.utc) - self.last_check).total_seconds()
        return age > max_age_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "details": self.details,
        }


TransportFactory = Callable[[ConnectorConfig], Transport]


class ConnectorManager:
    """
    Registry of healthcare connectors.

    Usage:
        async with ConnectorManager() as manager:
            await manager.register_connector("epic-prod", config)
            result = await manager.execute_remote_call("epic-prod", "patientSearch", {...})
    """

    def __init__(
        self,
        settings: Settings | None = None,
        validator: ComplianceValidator | None = None,
        audit_sink: AuditSink | None = None,
        config_store: ConfigStore | None = None,
        event_bus: EventBus | None = None,
        transport_factory: TransportFactory | None = None,
        master_secret: str | None = None,
    ):
        """
        Initialize the manager.

        Args:
            settings: Settings (defaults to get_settings())
            validator: Shared compliance validator
            audit_sink: Audit delivery target (defaults to the structured log)
            config_store: Persist registered configurations when given
            event_bus: Lifecycle event bus
            transport_factory: Builds a connector's transport from its config
            master_secret: Key material for sensitive-field encryption
        """
        self.settings = settings or get_settings()
        self.validator = validator or ComplianceValidator(
            frameworks=self.settings.compliance.frameworks,
            strict_mode=self.settings.compliance.strict_mode,
        )
        self.audit = AuditRecorder(audit_sink or StructlogAuditSink())
        self.config_store = config_store
        self.events = event_bus or EventBus()
        self.compliance_level = ",".join(self.validator.frameworks)
        self._transport_factory = transport_factory or self._default_transport

        secret = master_secret or self.settings.master_secret
        self._payload_encryption = (
            EncryptionService(secret, CONNECTOR_PAYLOAD_CONTEXT) if secret else None
        )

        self._connectors: dict[str, Connector] = {}
        self._health: dict[str, HealthRecord] = {}
        self._locks = KeyedLocks()

        self._running = False
        self._task: asyncio.Task | None = None

    def _default_transport(self, config: ConnectorConfig) -> Transport:
        return build_transport(config, self.settings.connector, self.compliance_level)

    # =========================================================================
    # Registration
    # =========================================================================

    async def register_connector(
        self,
        connector_id: str,
        config: ConnectorConfig | dict,
        actor: str = "system",
        persist: bool = True,
    ) -> Connector:
        """
        Validate, connect and register a connector.

        The registry is unchanged when any step fails.

        Raises:
            ValidationError: Duplicate id or malformed configuration.
            ComplianceViolation: Configuration is non-compliant.
            ConnectorConnectionError: Connection test failed.
            StorageError: Configuration could not be persisted.
        """
        try:
            async with self._locks.hold(connector_id):
                connector = await self._register(connector_id, config, persist)
        except HealthlinkError as e:
            logger.warning("Connector registration failed", connector_id=connector_id, error=e.message)
            await self.audit.log(
                actor, AuditAction.CONNECTOR_REGISTRATION_FAILED.value, connector_id,
                AuditOutcome.FAILURE, detail=e.message,
            )
            raise

        logger.info("Connector registered", connector_id=connector_id, type=connector.config.type.value)
        await self.audit.log(
            actor, AuditAction.CONNECTOR_REGISTERED.value, connector_id, AuditOutcome.SUCCESS,
        )
        if persist and self.config_store is not None:
            await self.audit.log(
                actor, AuditAction.CONFIG_SAVED.value, connector_id, AuditOutcome.SUCCESS,
            )
        await self.events.publish(ConnectorRegistered(
            connector_id=connector_id,
            connector_type=connector.config.type.value,
            actor=actor,
        ))
        return connector

    async def _register(self, connector_id: str, config: ConnectorConfig | dict, persist: bool) -> Connector:
        if not connector_id or not isinstance(connector_id, str):
            raise ValidationError("Connector id is required")
        if connector_id in self._connectors:
            raise ValidationError(f"Connector {connector_id} is already registered")

        config = parse_connector_config(config, connector_id)

        verdict = self.validator.validate_connector_compliance(config)
        if verdict.overall == OverallCompliance.NON_COMPLIANT:
            blocking = list(verdict.violations)
            raise ComplianceViolation(
                "Connector fails compliance validation: "
                + ", ".join(f"{v.rule} ({v.severity.value})" for v in blocking),
                violations=blocking,
            )

        if config.encrypt_sensitive_data and self._payload_encryption is None:
            raise ValidationError(
                f"Connector {connector_id} encrypts sensitive data but no master secret is configured"
            )

        connector = Connector(
            connector_id,
            config,
            self._transport_factory(config),
            payload_encryption=self._payload_encryption,
            settings=self.settings.connector,
            compliance_level=self.compliance_level,
        )

        try:
            probe = await connector.test_connection()
            if persist and self.config_store is not None:
                await self.config_store.save(connector_id, config)
        except BaseException:
            await connector.disconnect(drain_timeout=0)
            raise

        self._connectors[connector_id] = connector
        self._health[connector_id] = HealthRecord(status=HealthStatus.HEALTHY, details=probe)
        return connector

    async def unregister_connector(
        self,
        connector_id: str,
        actor: str = "system",
        purge_config: bool = False,
    ) -> bool:
        """
        Remove a connector and its health record, then disconnect it.

        Raises:
            NotFoundError: Unknown connector id.
        """
        async with self._locks.hold(connector_id):
            connector = self._connectors.pop(connector_id, None)
            if connector is None:
                await self.audit.log(
                    actor, AuditAction.CONNECTOR_UNREGISTRATION_FAILED.value, connector_id,
                    AuditOutcome.FAILURE, detail="Connector not found",
                )
                raise NotFoundError(f"Connector {connector_id} not found")
            self._health.pop(connector_id, None)

            await connector.disconnect(self.settings.connector.drain_timeout_seconds)

            purged = False
            if purge_config and self.config_store is not None:
                try:
                    await self.config_store.delete(connector_id)
                    purged = True
                except NotFoundError:
                    logger.debug("No stored configuration to purge", connector_id=connector_id)

        logger.info("Connector unregistered", connector_id=connector_id)
        await self.audit.log(
            actor, AuditAction.CONNECTOR_UNREGISTERED.value, connector_id, AuditOutcome.SUCCESS,
        )
        if purged:
            await self.audit.log(
                actor, AuditAction.CONFIG_DELETED.value, connector_id, AuditOutcome.SUCCESS,
            )
        await self.events.publish(ConnectorUnregistered(connector_id=connector_id, actor=actor))
        return True

    async def restore_connectors(self, actor: str = "system") -> dict[str, str]:
        """
        Register every valid stored configuration not already registered.

        Returns:
            Per-id outcome: "registered", "skipped" or the error message.
        """
        if self.config_store is None:
            raise ValidationError("No configuration store is attached")

        outcomes: dict[str, str] = {}
        for entry in await self.config_store.list():
            if not isinstance(entry, StoredConfigSummary):
                outcomes[entry.id] = entry.error
                continue
            if entry.id in self._connectors:
                outcomes[entry.id] = "skipped"
                continue
            try:
                config = await self.config_store.load(entry.id)
                await self.register_connector(entry.id, config, actor=actor, persist=False)
                outcomes[entry.id] = "registered"
            except HealthlinkError as e:
                outcomes[entry.id] = e.message

        logger.info(
            "Stored connectors restored",
            registered=sum(1 for v in outcomes.values() if v == "registered"),
            total=len(outcomes),
        )
        return outcomes

    # =========================================================================
    # Remote Calls
    # =========================================================================

    async def execute_remote_call(
        self,
        connector_id: str,
        method: str,
        params: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> Any:
        """
        Execute a method on a remote system through a registered connector.

        Raises:
            NotFoundError: Unknown connector id.
            ComplianceViolation: The payload may not be sent through this connector.
            ConnectorConnectionError: The call failed.
        """
        connector = self._get(connector_id)
        params = params or {}
        options = dict(options or {})

        await self._ensure_health(connector)

        operation = options.pop("operation", method)
        verdict = self.validator.validate_data_transmission(params, connector.config, operation)

        if verdict.overall == OverallCompliance.NON_COMPLIANT:
            violation = ComplianceViolation(
                "Data transmission violates compliance: "
                + ", ".join(v.message for v in verdict.violations),
                violations=list(verdict.violations),
            )
            await self.audit.log(
                actor, remote_call_action(method), connector_id, AuditOutcome.FAILURE,
                detail=violation.message,
            )
            raise violation

        if verdict.audit_required:
            await self.audit.log(
                actor,
                AuditAction.COMPLIANCE_VALIDATED.value,
                connector_id,
                AuditOutcome.SUCCESS,
                detail={
                    "method": method,
                    "compliant": verdict.compliant,
                    "classification": verdict.data_classification.level.value,
                    "encryption_required": verdict.encryption_required,
                    "audit_required": verdict.audit_required,
                },
                resource_type=DATA_TRANSMISSION,
            )

        try:
            result = await connector.execute_call(
                method, params, options, encryption_required=verdict.encryption_required,
            )
        except HealthlinkError as e:
            await self.audit.log(
                actor, remote_call_action(method), connector_id, AuditOutcome.FAILURE,
                detail=e.message,
            )
            await self.events.publish(ConnectorError(
                connector_id=connector_id,
                method=method,
                error=e.message,
                status_code=getattr(e, "status_code", None),
            ))
            raise

        await self.audit.log(actor, remote_call_action(method), connector_id, AuditOutcome.SUCCESS)
        return result

    async def _ensure_health(self, connector: Connector) -> None:
        """Refresh health when missing, stale or unhealthy. Never blocks dispatch."""
        record = self._health.get(connector.id)
        stale_after = self.settings.connector.health_stale_after_seconds
        if record is None or record.status != HealthStatus.HEALTHY or record.is_stale(stale_after):
            await self._check_connector(connector)

    # =========================================================================
    # Status
    # =========================================================================

    def get_connector(self, connector_id: str) -> Connector:
        return self._get(connector_id)

    def get_connector_status(self, connector_id: str) -> dict[str, Any]:
        """
        Status projection for one connector.

        Raises:
            NotFoundError: Unknown connector id.
        """
        return self._project(self._get(connector_id))

    def list_connectors(self) -> list[dict[str, Any]]:
        connectors = dict(self._connectors)
        return [self._project(connectors[cid]) for cid in sorted(connectors)]

    def get_health(self, connector_id: str) -> HealthRecord | None:
        return self._health.get(connector_id)

    def _project(self, connector: Connector) -> dict[str, Any]:
        health = self._health.get(connector.id)
        return {
            "id": connector.id,
            "type": connector.config.type.value,
            "status": connector.status.value,
            "last_health_check": health.last_check.isoformat() if health else None,
            "health_status": health.status.value if health else None,
            "config": connector.get_config(),
            "metrics": connector.get_metrics(),
            "last_activity": connector.last_activity.isoformat() if connector.last_activity else None,
        }

    def _get(self, connector_id: str) -> Connector:
        connector = self._connectors.get(connector_id)
        if connector is None:
            raise NotFoundError(f"Connector {connector_id} not found")
        return connector

    # =========================================================================
    # Health Checks
    # =========================================================================

    async def run_health_checks(self) -> dict[str, HealthRecord]:
        """One tick: probe every registered connector concurrently."""
        connectors = list(self._connectors.values())
        if not connectors:
            return {}

        records = await asyncio.gather(*(self._check_connector(c) for c in connectors))
        return {
            connector.id: record
            for connector, record in zip(connectors, records)
            if record is not None
        }

    async def _check_connector(self, connector: Connector) -> HealthRecord | None:
        try:
            probe: HealthProbeResult = await connector.perform_health_check()
            record = HealthRecord(
                status=HealthStatus.HEALTHY if probe.healthy else HealthStatus.UNHEALTHY,
                last_check=probe.timestamp,
                details=probe.to_dict(),
            )
        except Exception as e:
            logger.error("Health check raised", connector_id=connector.id, error=str(e))
            record = HealthRecord(status=HealthStatus.ERROR, details={"error": str(e)})

        # Connector was unregistered or replaced while probing
        if self._connectors.get(connector.id) is not connector:
            return None

        previous = self._health.get(connector.id)
        self._health[connector.id] = record

        if previous is not None and previous.status == record.status:
            return record

        if record.status == HealthStatus.UNHEALTHY:
            logger.warning("Connector unhealthy", connector_id=connector.id, error=record.details.get("error"))
            await self.events.publish(ConnectorUnhealthy(
                connector_id=connector.id,
                error=record.details.get("error"),
                status_code=record.details.get("status_code"),
            ))
        elif record.status == HealthStatus.ERROR:
            await self.events.publish(ConnectorError(
                connector_id=connector.id,
                error=record.details.get("error"),
            ))
        return record

    async def start(self):
        """Start the recurring health-check loop."""
        if self._running:
            logger.warning("Health checks already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._health_check_loop())
        logger.info(
            "Health checks started",
            interval_seconds=self.settings.connector.health_check_interval_seconds,
        )

    async def stop(self):
        """Stop the health-check loop."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Health checks stopped")

    async def shutdown(self):
        """Stop health checks and disconnect every connector. Stored configs are kept."""
        await self.stop()

        connectors = list(self._connectors.values())
        self._connectors.clear()
        self._health.clear()

        await asyncio.gather(
            *(c.disconnect(self.settings.connector.drain_timeout_seconds) for c in connectors),
            return_exceptions=True,
        )

    async def _health_check_loop(self):
        interval = self.settings.connector.health_check_interval_seconds
        while self._running:
            try:
                await self.run_health_checks()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Health check loop error", error=str(e))
                await asyncio.sleep(min(interval, 5))

    async def __aenter__(self) -> "ConnectorManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
