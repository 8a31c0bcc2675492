"""
HealthLink Configuration Module

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class HealthlinkSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="HEALTHLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = True

    # Master secret for payload and configuration encryption.
    # Supplied externally; never generated or persisted by the core.
    master_secret: SecretStr | None = None


class ConnectorSettings(BaseSettings):
    """Connector runtime settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONNECTOR_",
        env_file=".env",
        extra="ignore",
    )

    # Defaults applied when a connector omits errorHandling
    default_timeout_ms: int = 30000
    default_retry_attempts: int = 3
    default_retry_delay_ms: int = 1000

    # Health probe path, bounded by the connector's own timeoutMs
    health_path: str = "/health"
    call_path: str = "/mcp/call"

    # Health-check scheduler
    health_check_interval_seconds: float = 60.0
    health_stale_after_seconds: float = 120.0

    # Unregister waits this long for in-flight calls before cancelling them
    drain_timeout_seconds: float = 10.0

    # Payload keys encrypted when encryptSensitiveData is set
    sensitive_fields: list[str] = Field(
        default_factory=lambda: ["patientData", "phi", "personalInfo"]
    )

    user_agent: str = "HealthLink-Connector/0.1.0"


class ComplianceSettings(BaseSettings):
    """Compliance validation settings."""

    model_config = SettingsConfigDict(
        env_prefix="COMPLIANCE_",
        env_file=".env",
        extra="ignore",
    )

    frameworks: list[str] = Field(default_factory=lambda: ["HIPAA", "NPHIES"])
    strict_mode: bool = True

    @property
    def compliance_level(self) -> str:
        """Comma-joined framework list, as sent in X-Healthcare-Compliance."""
        return ",".join(self.frameworks)


class StorageSettings(BaseSettings):
    """Connector configuration storage settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONNECTOR_CONFIG_",
        env_file=".env",
        extra="ignore",
    )

    backend: Literal["filesystem", "memory"] = "filesystem"
    dir: str = "./connector-configs"
    backup_dirname: str = "backups"


class Settings:
    """
    Aggregated settings container.

    Usage:
        from healthlink.config import get_settings
        settings = get_settings()
        print(settings.connector.health_check_interval_seconds)
        print(settings.compliance.frameworks)
    """

    def __init__(self):
        self.app = HealthlinkSettings()
        self.connector = ConnectorSettings()
        self.compliance = ComplianceSettings()
        self.storage = StorageSettings()

    @property
    def master_secret(self) -> str | None:
        if self.app.master_secret is None:
            return None
        return self.app.master_secret.get_secret_value() or None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()
