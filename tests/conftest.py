"""
Shared fixtures for HealthLink tests.
"""

from typing import Any, Callable

import httpx
import pytest

from healthlink.config import (
    ComplianceSettings,
    ConnectorSettings,
    HealthlinkSettings,
    Settings,
    StorageSettings,
)
from healthlink.connectors.manager import ConnectorManager
from healthlink.connectors.transport import HttpTransport
from healthlink.models import ConnectorConfig
from healthlink.security.audit import MemoryAuditSink
from healthlink.storage.backends import MemoryBackend
from healthlink.storage.config_store import ConfigStore


MASTER_SECRET = "unit-test-master-secret-0123456789"

SYNTHETIC_ENDPOINT = "https://fhir.test.local/R4"
HTTP_ENDPOINT = "https://ehr.hospital.org/api"


def make_config(**overrides: Any) -> dict[str, Any]:
    """A HIPAA-compliant connector descriptor in wire (camelCase) form."""
    config = {
        "type": "fhir_server",
        "name": "Test FHIR Server",
        "endpoint": SYNTHETIC_ENDPOINT,
        "authentication": {"type": "bearer", "token": "bearer-secret"},
        "healthcareCompliance": {
            "hipaa": True,
            "encryptionRequired": True,
            "auditRequired": True,
        },
        "errorHandling": {"retryAttempts": 2, "retryDelayMs": 0, "timeoutMs": 2000},
    }
    config.update(overrides)
    return config


@pytest.fixture
def settings() -> Settings:
    s = Settings()
    s.app = HealthlinkSettings(master_secret=MASTER_SECRET, log_json=False)
    s.connector = ConnectorSettings(
        health_check_interval_seconds=0.05,
        health_stale_after_seconds=120.0,
        drain_timeout_seconds=0.5,
    )
    s.compliance = ComplianceSettings(frameworks=["HIPAA", "NPHIES"], strict_mode=True)
    s.storage = StorageSettings(backend="memory")
    return s


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def config_store() -> ConfigStore:
    return ConfigStore(master_secret=MASTER_SECRET, backend=MemoryBackend(), compliance_level="HIPAA,NPHIES")


@pytest.fixture
def manager(settings, audit_sink) -> ConnectorManager:
    return ConnectorManager(settings=settings, audit_sink=audit_sink)


@pytest.fixture
def mock_http(settings) -> Callable[[Callable[[httpx.Request], httpx.Response]], Callable]:
    """Build a transport factory whose HTTP traffic goes to a handler."""

    def factory(handler):
        def build(config: ConnectorConfig) -> HttpTransport:
            return HttpTransport(
                config,
                settings.connector,
                "HIPAA,NPHIES",
                transport=httpx.MockTransport(handler),
            )
        return build

    return factory
