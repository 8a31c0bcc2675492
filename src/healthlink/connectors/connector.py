"""
Healthcare Web Connector

One live connection to a remote healthcare system.

Features:
- Connection test and liveness probe
- Remote calls with per-attempt timeout and retry of idempotent reads
- Field-level encryption of designated sensitive parameters
- Path templates from the data mapping
- Call metrics and last-activity tracking
- Draining disconnect
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote
import asyncio
import re
import time

import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from healthlink.config import ConnectorSettings, get_settings
from healthlink.connectors.transport import (
    CONNECTION_REFUSED,
    TIMEOUT,
    TRANSPORT_ERROR,
    UNAUTHORIZED,
    Transport,
)
from healthlink.errors import ConnectorConnectionError, HealthlinkError, ValidationError
from healthlink.models import ConnectorConfig, ConnectorStatus
from healthlink.security.encryption import EncryptedBlob, EncryptionService

logger = structlog.get_logger(__name__)


# Method prefixes treated as side-effect free
READ_METHOD_PREFIXES = ("get", "list", "search", "read", "query", "fetch", "find", "lookup", "retrieve")

MAX_RETRY_WAIT_SECONDS = 30.0

PATH_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class ConnectorMetrics:
    """Per-connector call counters."""
    calls_total: int = 0
    calls_successful: int = 0
    calls_failed: int = 0
    last_response_time_ms: float = 0.0
    average_response_time_ms: float = 0.0

    def record_success(self, elapsed_ms: float) -> None:
        self.calls_successful += 1
        self.last_response_time_ms = elapsed_ms
        # Running mean over successful calls
        n = self.calls_successful
        self.average_response_time_ms = (self.average_response_time_ms * (n - 1) + elapsed_ms) / n

    def record_failure(self, elapsed_ms: float) -> None:
        self.calls_failed += 1
        self.last_response_time_ms = elapsed_ms

    def snapshot(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class HealthProbeResult:
    """Outcome of one liveness probe."""
    healthy: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    response_time_ms: float | None = None
    status_code: int | None = None
    error: str | None = None
    details: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


def is_idempotent(method: str, options: dict[str, Any] | None = None) -> bool:
    """Explicit options["idempotent"] wins; otherwise read-style method names."""
    if options and "idempotent" in options:
        return bool(options["idempotent"])
    return method.lower().startswith(READ_METHOD_PREFIXES)


def is_transient(error: BaseException) -> bool:
    """Timeouts, refused connections, transport faults, 429 and 5xx."""
    if not isinstance(error, ConnectorConnectionError):
        return False
    if error.code in (TIMEOUT, CONNECTION_REFUSED, TRANSPORT_ERROR):
        return True
    status = error.status_code
    return status is not None and (status == 429 or status >= 500)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class Connector:
    """
    A registered connection to one remote healthcare system.

    Usage:
        connector = Connector("epic-prod", config, transport)
        await connector.test_connection()
        result = await connector.execute_call("getPatient", {"id": "123"})
    """

    def __init__(
        self,
        connector_id: str,
        config: ConnectorConfig,
        transport: Transport,
        payload_encryption: EncryptionService | None = None,
        settings: ConnectorSettings | None = None,
        compliance_level: str = "",
    ):
        self.id = connector_id
        self.config = config
        self.transport = transport
        self.settings = settings or get_settings().connector
        self.compliance_level = compliance_level
        self._payload_encryption = payload_encryption

        self.status = ConnectorStatus.DISCONNECTED
        self.last_activity: datetime | None = None
        self.metrics = ConnectorMetrics()

        self._closed = False
        self._inflight: dict[asyncio.Task, int] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Connection
    # =========================================================================

    async def test_connection(self) -> dict[str, Any]:
        """
        Probe the health path and move to connected.

        Raises:
            ConnectorConnectionError: Probe failed; status is error.
        """
        self.status = ConnectorStatus.CONNECTING
        timeout = self.config.error_handling.timeout_ms / 1000
        start = time.perf_counter()

        try:
            await asyncio.wait_for(self.transport.probe(self.settings.health_path), timeout=timeout)
        except asyncio.TimeoutError as e:
            self.status = ConnectorStatus.ERROR
            raise ConnectorConnectionError(
                f"Connection test failed: no response within {timeout:g}s", code=TIMEOUT
            ) from e
        except ConnectorConnectionError as e:
            self.status = ConnectorStatus.ERROR
            raise ConnectorConnectionError(
                f"Connection test failed: {e.message}", status_code=e.status_code, code=e.code
            ) from e

        elapsed = 0.0 if self.transport.synthetic else _elapsed_ms(start)
        self.metrics.last_response_time_ms = elapsed
        self.status = ConnectorStatus.CONNECTED
        self.last_activity = datetime.now(timezone.utc)

        logger.info("Connector connected", connector_id=self.id, response_time_ms=round(elapsed, 2))
        return {"connected": True, "response_time_ms": elapsed, "synthetic": self.transport.synthetic}

    async def perform_health_check(self) -> HealthProbeResult:
        """Liveness probe. Failures are reported in the result, never raised."""
        if self._closed:
            return HealthProbeResult(healthy=False, error="Connector is disconnected")

        timeout = self.config.error_handling.timeout_ms / 1000
        start = time.perf_counter()

        try:
            details = await asyncio.wait_for(
                self.transport.probe(self.settings.health_path), timeout=timeout
            )
        except asyncio.TimeoutError:
            self._set_status(ConnectorStatus.ERROR)
            return HealthProbeResult(
                healthy=False,
                response_time_ms=_elapsed_ms(start),
                error=f"Health check timed out after {timeout:g}s",
            )
        except ConnectorConnectionError as e:
            self._set_status(ConnectorStatus.ERROR)
            self._apply_failure_status(e)
            return HealthProbeResult(
                healthy=False,
                response_time_ms=_elapsed_ms(start),
                status_code=e.status_code,
                error=e.message,
            )
        except Exception as e:
            logger.error("Health check failed unexpectedly", connector_id=self.id, error=str(e))
            self._set_status(ConnectorStatus.ERROR)
            return HealthProbeResult(healthy=False, response_time_ms=_elapsed_ms(start), error=str(e))

        self._set_status(ConnectorStatus.CONNECTED)
        return HealthProbeResult(healthy=True, response_time_ms=_elapsed_ms(start), details=details)

    async def disconnect(self, drain_timeout: float | None = None) -> None:
        """
        Stop accepting calls, drain in-flight ones, close the transport.

        Calls still running after drain_timeout are cancelled.
        """
        if drain_timeout is None:
            drain_timeout = self.settings.drain_timeout_seconds

        self._closed = True
        self.status = ConnectorStatus.DISCONNECTED

        current = asyncio.current_task()
        if any(task is not current for task in self._inflight):
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                stragglers = [task for task in self._inflight if task is not current]
                logger.warning(
                    "Cancelling in-flight calls",
                    connector_id=self.id,
                    count=len(stragglers),
                )
                for task in stragglers:
                    task.cancel()
                await asyncio.gather(*stragglers, return_exceptions=True)

        await self.transport.close()
        logger.info("Connector disconnected", connector_id=self.id)

    # =========================================================================
    # Remote Calls
    # =========================================================================

    async def execute_call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        encryption_required: bool = False,
    ) -> Any:
        """
        Dispatch one remote call.

        Raises:
            ConnectorConnectionError: Disconnected, transport failure or timeout.
            ValidationError: Parameters could not be prepared.
        """
        if self._closed:
            raise ConnectorConnectionError(f"Connector {self.id} is disconnected", code="DISCONNECTED")

        params = dict(params or {})
        options = dict(options or {})

        self._track()
        self.metrics.calls_total += 1
        start = time.perf_counter()

        try:
            body = {
                "method": method,
                "params": self.protect_sensitive_data(params),
                "options": {
                    **{k: v for k, v in options.items() if k != "idempotent"},
                    "complianceLevel": self.compliance_level,
                    "encryptionRequired": encryption_required,
                },
            }
            path = self.resolve_path(method, params)
            result = await self._dispatch(path, body, is_idempotent(method, options))
        except asyncio.CancelledError:
            self.metrics.record_failure(_elapsed_ms(start))
            logger.info("Remote call cancelled", connector_id=self.id, method=method)
            raise
        except ConnectorConnectionError as e:
            self.metrics.record_failure(_elapsed_ms(start))
            self._apply_failure_status(e)
            logger.warning(
                "Remote call failed",
                connector_id=self.id,
                method=method,
                error=e.message,
                status_code=e.status_code,
            )
            raise ConnectorConnectionError(
                f"Remote call failed: {e.message}", status_code=e.status_code, code=e.code
            ) from e
        except HealthlinkError:
            self.metrics.record_failure(_elapsed_ms(start))
            raise
        except Exception as e:
            self.metrics.record_failure(_elapsed_ms(start))
            logger.error("Remote call failed unexpectedly", connector_id=self.id, method=method, error=str(e))
            raise ConnectorConnectionError(f"Remote call failed: {e}") from e
        else:
            elapsed = _elapsed_ms(start)
            self.metrics.record_success(elapsed)
            self.last_activity = datetime.now(timezone.utc)
            logger.debug(
                "Remote call completed",
                connector_id=self.id,
                method=method,
                response_time_ms=round(elapsed, 2),
            )
            return result
        finally:
            self._untrack()

    def protect_sensitive_data(self, params: dict[str, Any]) -> dict[str, Any]:
        """Replace designated sensitive values with encrypted blobs."""
        if not self.config.encrypt_sensitive_data:
            return params

        if self._payload_encryption is None:
            raise ValidationError(
                f"Connector {self.id} requires a master secret to encrypt sensitive data"
            )

        protected = dict(params)
        for name in self.settings.sensitive_fields:
            value = protected.get(name)
            if value is None or value == "" or EncryptedBlob.looks_like(value):
                continue
            protected[name] = self._payload_encryption.encrypt(value).to_wire()
        return protected

    def resolve_path(self, method: str, params: dict[str, Any]) -> str:
        """Path template from the data mapping, else the generic call path."""
        template = self.config.data_mapping.get(method)
        if not isinstance(template, str):
            return self.settings.call_path

        def substitute(match: re.Match) -> str:
            name = match.group(1)
            if params.get(name) is None:
                raise ValidationError(f"Missing parameter '{name}' for {method} path")
            return quote(str(params[name]), safe="")

        return PATH_PLACEHOLDER.sub(substitute, template)

    async def _dispatch(self, path: str, body: dict[str, Any], idempotent: bool) -> Any:
        policy = self.config.error_handling
        attempts = policy.retry_attempts + 1 if idempotent else 1
        delay = policy.retry_delay_ms / 1000

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=delay, max=MAX_RETRY_WAIT_SECONDS),
            retry=retry_if_exception(is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                result = await self._send_once(path, body, policy.timeout_ms / 1000)
        return result

    async def _send_once(self, path: str, body: dict[str, Any], timeout: float) -> Any:
        try:
            return await asyncio.wait_for(self.transport.send(path, body), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ConnectorConnectionError(f"No response within {timeout:g}s", code=TIMEOUT) from e

    def _log_retry(self, retry_state) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            "Retrying remote call",
            connector_id=self.id,
            attempt=retry_state.attempt_number,
            error=getattr(error, "message", str(error)),
        )

    def _set_status(self, status: ConnectorStatus) -> None:
        if not self._closed:
            self.status = status

    def _apply_failure_status(self, error: ConnectorConnectionError) -> None:
        if self._closed:
            return
        if error.status_code == 401 or error.code == UNAUTHORIZED:
            self.status = ConnectorStatus.UNAUTHORIZED
        elif error.code == CONNECTION_REFUSED:
            self.status = ConnectorStatus.DISCONNECTED

    def _track(self) -> None:
        task = asyncio.current_task()
        self._inflight[task] = self._inflight.get(task, 0) + 1
        self._idle.clear()

    def _untrack(self) -> None:
        task = asyncio.current_task()
        remaining = self._inflight.get(task, 1) - 1
        if remaining > 0:
            self._inflight[task] = remaining
        else:
            self._inflight.pop(task, None)
        if not self._inflight:
            self._idle.set()

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_config(self) -> dict[str, Any]:
        """Configuration without authentication material."""
        return self.config.sanitized()

    def get_metrics(self) -> dict[str, Any]:
        return self.metrics.snapshot()
