"""
Connector Configuration Store

Encrypted-at-rest storage for connector configurations:
- save / load / list / update / delete / backup
- Required-field validation before anything reaches the medium
- Store-owned metadata (createdAt, updatedAt, schema version)
- Per-entry error reporting when listing
"""

from datetime import datetime, timezone
from typing import Any
import asyncio
import json
import re

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from healthlink.config import get_settings
from healthlink.errors import HealthlinkError, IntegrityError, NotFoundError, StorageError, ValidationError
from healthlink.locks import KeyedLocks
from healthlink.models import (
    ConnectorConfig,
    format_validation_errors,
    merge_connector_config,
    parse_connector_config,
)
from healthlink.security.encryption import STORED_CONFIG_CONTEXT, EncryptedBlob, EncryptionService
from healthlink.storage.backends import StorageBackend, build_backend

logger = structlog.get_logger(__name__)


SCHEMA_VERSION = "1.0.0"

CONNECTOR_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


# =============================================================================
# Models
# =============================================================================

class ConfigMetadata(BaseModel):
    created_at: datetime
    updated_at: datetime
    schema_version: str = SCHEMA_VERSION
    compliance_level: str | None = None


class StoredConfig(BaseModel):
    """Decrypted record: configuration plus store-owned metadata."""
    config: ConnectorConfig
    metadata: ConfigMetadata


class StoreAck(BaseModel):
    success: bool = True
    connector_id: str
    location: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StoredConfigSummary(BaseModel):
    id: str
    status: str = "valid"
    type: str
    name: str | None = None
    endpoint: str
    compliance: dict[str, Any] = Field(default_factory=dict)
    last_modified: datetime | None = None


class InvalidConfigEntry(BaseModel):
    id: str
    status: str = "invalid"
    error: str


class BackupResult(BaseModel):
    location: str
    count: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# Store
# =============================================================================

def validate_storable(config: ConnectorConfig | dict, connector_id: str) -> ConnectorConfig:
    """
    Validate a configuration for durable storage.

    Requires type, name, endpoint, authentication and healthcare
    compliance declaring HIPAA or NPHIES.
    """
    config = parse_connector_config(config, connector_id)

    if not config.name:
        raise ValidationError("Missing required configuration field: name")

    if not config.healthcare_compliance.handles_phi:
        raise ValidationError("Healthcare compliance configuration must include HIPAA or NPHIES")

    return config


class ConfigStore:
    """
    Secure storage for connector configurations.

    Usage:
        store = ConfigStore(master_secret="...")
        await store.save("epic-prod", config)
        config = await store.load("epic-prod")
    """

    def __init__(
        self,
        master_secret: str | None = None,
        backend: StorageBackend | None = None,
        compliance_level: str | None = None,
    ):
        settings = get_settings()

        secret = master_secret or settings.master_secret
        if not secret:
            raise ValidationError("Encryption key required for secure configuration storage")

        self._encryption = EncryptionService(secret, STORED_CONFIG_CONTEXT)
        self.backend = backend or build_backend(settings.storage)
        self.compliance_level = compliance_level or settings.compliance.compliance_level
        self._locks = KeyedLocks()

    # =========================================================================
    # Public API
    # =========================================================================

    async def save(self, connector_id: str, config: ConnectorConfig | dict) -> StoreAck:
        """Validate, stamp metadata, encrypt and write a configuration."""
        _check_connector_id(connector_id)
        config = validate_storable(config, connector_id)

        async with self._locks.hold(connector_id):
            existing = await self._try_load_record(connector_id)
            created_at = existing.metadata.created_at if existing else None
            location = await self._write_record(connector_id, config, created_at)

        logger.info("Connector configuration saved", connector_id=connector_id)
        return StoreAck(connector_id=connector_id, location=location)

    async def load(self, connector_id: str) -> ConnectorConfig:
        """Load and decrypt a configuration."""
        return (await self.load_record(connector_id)).config

    async def load_record(self, connector_id: str) -> StoredConfig:
        _check_connector_id(connector_id)
        raw = await self._call(self.backend.read, connector_id)
        if raw is None:
            raise NotFoundError(f"Configuration not found for connector: {connector_id}")
        return self._decode_record(connector_id, raw)

    async def list(self) -> list[StoredConfigSummary | InvalidConfigEntry]:
        """
        Summaries of every stored configuration, ordered by id.

        A record that fails to decrypt or parse is reported as an
        InvalidConfigEntry instead of aborting the listing.
        """
        keys = await self._call(self.backend.list_keys)
        entries: list[StoredConfigSummary | InvalidConfigEntry] = []

        for key in keys:
            try:
                record = await self.load_record(key)
            except HealthlinkError as e:
                logger.warning("Invalid stored configuration", connector_id=key, error=e.message)
                entries.append(InvalidConfigEntry(id=key, error=e.message))
                continue

            config = record.config
            entries.append(StoredConfigSummary(
                id=key,
                type=config.type.value,
                name=config.name,
                endpoint=config.endpoint,
                compliance=config.healthcare_compliance.model_dump(mode="json"),
                last_modified=await self._call(self.backend.modified_at, key),
            ))

        return entries

    async def update(self, connector_id: str, updates: dict[str, Any]) -> StoreAck:
        """Load, merge and save. Concurrent updates resolve last-writer-wins."""
        _check_connector_id(connector_id)

        async with self._locks.hold(connector_id):
            record = await self.load_record(connector_id)
            merged = merge_connector_config(record.config, updates)
            merged = validate_storable(merged, connector_id)
            location = await self._write_record(connector_id, merged, record.metadata.created_at)

        logger.info("Connector configuration updated", connector_id=connector_id)
        return StoreAck(connector_id=connector_id, location=location)

    async def delete(self, connector_id: str) -> StoreAck:
        _check_connector_id(connector_id)

        async with self._locks.hold(connector_id):
            removed = await self._call(self.backend.delete, connector_id)

        if not removed:
            raise NotFoundError(f"Configuration not found for connector: {connector_id}")

        logger.info("Connector configuration deleted", connector_id=connector_id)
        return StoreAck(connector_id=connector_id)

    async def backup(self) -> BackupResult:
        """Copy every current encrypted record into a timestamped backup area."""
        location, count = await self._call(self.backend.snapshot)
        return BackupResult(location=location, count=count)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _write_record(
        self,
        connector_id: str,
        config: ConnectorConfig,
        created_at: datetime | None,
    ) -> str:
        now = datetime.now(timezone.utc)
        metadata = ConfigMetadata(
            created_at=created_at or now,
            updated_at=now,
            compliance_level=self.compliance_level,
        )
        record = {
            "config": config.to_storage_dict(),
            "metadata": metadata.model_dump(mode="json"),
        }

        envelope = self._encryption.encrypt(record).to_wire()
        envelope["encryptedAt"] = now.isoformat()
        data = json.dumps(envelope, indent=2).encode("utf-8")

        return await self._call(self.backend.write, connector_id, data)

    async def _try_load_record(self, connector_id: str) -> StoredConfig | None:
        try:
            return await self.load_record(connector_id)
        except NotFoundError:
            return None
        except (IntegrityError, ValidationError) as e:
            logger.warning("Overwriting unreadable configuration", connector_id=connector_id, error=e.message)
            return None

    def _decode_record(self, connector_id: str, raw: bytes) -> StoredConfig:
        try:
            envelope = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IntegrityError(f"Stored configuration for {connector_id} is not valid JSON") from e

        if not EncryptedBlob.looks_like(envelope):
            raise IntegrityError(f"Stored configuration for {connector_id} is not an encrypted record")

        record = self._encryption.decrypt(envelope)

        try:
            stored = StoredConfig.model_validate(record)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Stored configuration for {connector_id} is invalid: {format_validation_errors(e)}"
            ) from e

        if stored.config.id != connector_id:
            stored = stored.model_copy(update={"config": stored.config.model_copy(update={"id": connector_id})})
        return stored

    async def _call(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except OSError as e:
            raise StorageError(f"Configuration storage failed: {e.strerror or e}") from e


def _check_connector_id(connector_id: str) -> None:
    if not isinstance(connector_id, str) or not CONNECTOR_ID_PATTERN.match(connector_id):
        raise ValidationError(f"Invalid connector id: {connector_id!r}")
