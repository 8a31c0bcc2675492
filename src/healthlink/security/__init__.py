"""
HealthLink Security Module

- Authenticated encryption for payloads and stored configuration
- Audit record construction and delivery
"""

from healthlink.security.encryption import (
    CONNECTOR_PAYLOAD_CONTEXT,
    STORED_CONFIG_CONTEXT,
    EncryptedBlob,
    EncryptionService,
)
from healthlink.security.audit import (
    AuditAction,
    AuditOutcome,
    AuditRecord,
    AuditRecorder,
    AuditSink,
    MemoryAuditSink,
    StructlogAuditSink,
)

__all__ = [
    "CONNECTOR_PAYLOAD_CONTEXT",
    "STORED_CONFIG_CONTEXT",
    "EncryptedBlob",
    "EncryptionService",
    "AuditAction",
    "AuditOutcome",
    "AuditRecord",
    "AuditRecorder",
    "AuditSink",
    "MemoryAuditSink",
    "StructlogAuditSink",
]
