"""
Connector Configuration Models

Pydantic models for connector descriptors:
- System types and authentication schemes
- Healthcare compliance flags
- Error-handling (timeout/retry) policy
- Parsing helpers that map pydantic errors to ValidationError
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union
import re
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from healthlink.config import get_settings
from healthlink.errors import ValidationError
from healthlink.observability.logging import REDACTED


# Header names whose values are credentials
SECRET_HEADER_PATTERN = re.compile(r"authorization|cookie|key|token|secret|password", re.IGNORECASE)


# =============================================================================
# Enums
# =============================================================================

class ConnectorType(str, Enum):
    """Remote healthcare system kinds."""
    EHR_SYSTEM = "ehr_system"
    FHIR_SERVER = "fhir_server"
    AUDIT_SYSTEM = "audit_system"
    LIS_SYSTEM = "lis_system"  # Laboratory
    RIS_SYSTEM = "ris_system"  # Radiology / imaging
    PIS_SYSTEM = "pis_system"  # Pharmacy
    HIE_SYSTEM = "hie_system"  # Health information exchange


class AuthType(str, Enum):
    """Closed set of supported authentication schemes."""
    BEARER = "bearer"
    APIKEY = "apikey"
    OAUTH2 = "oauth2"
    BASIC = "basic"


class ConnectorStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    UNAUTHORIZED = "unauthorized"
    ERROR = "error"


class CamelModel(BaseModel):
    """Accepts camelCase (wire) and snake_case (Python) keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# =============================================================================
# Authentication
# =============================================================================

class BearerAuth(CamelModel):
    type: Literal["bearer"] = "bearer"
    token: str = Field(min_length=1, repr=False)


class ApiKeyAuth(CamelModel):
    type: Literal["apikey"] = "apikey"
    key: str = Field(min_length=1, repr=False)
    header: str = "X-API-Key"


class OAuth2Auth(CamelModel):
    type: Literal["oauth2"] = "oauth2"
    access_token: str | None = Field(default=None, repr=False)
    client_id: str | None = None
    client_secret: str | None = Field(default=None, repr=False)
    token_url: str | None = None
    scope: str | None = None

    @model_validator(mode="after")
    def _require_token_or_client_credentials(self) -> "OAuth2Auth":
        if self.access_token:
            return self
        if self.client_id and self.client_secret and self.token_url:
            return self
        raise ValueError(
            "oauth2 requires accessToken or clientId, clientSecret and tokenUrl"
        )


class BasicAuth(CamelModel):
    type: Literal["basic"] = "basic"
    username: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)


Authentication = Annotated[
    Union[BearerAuth, ApiKeyAuth, OAuth2Auth, BasicAuth],
    Field(discriminator="type"),
]


# =============================================================================
# Compliance / Error Handling
# =============================================================================

class HealthcareCompliance(CamelModel):
    """Framework flags declared by a connector."""
    hipaa: bool = False
    nphies: bool = False
    encryption_required: bool = False
    audit_required: bool = False

    # NPHIES (Saudi) sub-flags
    arabic_support: bool = False
    saudi_data_mapping: bool = False

    # Domain standards
    fhir_r4: bool = False
    clia: bool = False
    dicom: bool = False
    dea: bool = False
    direct_trust: bool = False

    data_retention_days: int | None = None

    @property
    def handles_phi(self) -> bool:
        return self.hipaa or self.nphies


class ErrorHandling(CamelModel):
    """Timeout and retry policy. Omitted fields use the CONNECTOR_DEFAULT_* settings."""
    retry_attempts: int = Field(
        default_factory=lambda: get_settings().connector.default_retry_attempts, ge=0,
    )
    retry_delay_ms: int = Field(
        default_factory=lambda: get_settings().connector.default_retry_delay_ms,
        ge=0,
        validation_alias=AliasChoices("retryDelayMs", "retryDelay", "retry_delay_ms"),
    )
    timeout_ms: int = Field(
        default_factory=lambda: get_settings().connector.default_timeout_ms, gt=0,
    )


# =============================================================================
# Connector Config
# =============================================================================

class ConnectorConfig(CamelModel):
    """
    Descriptor for one remote healthcare endpoint.

    Immutable once registered; updates go through the config store
    and a fresh registration.
    """
    id: str | None = None
    type: ConnectorType
    name: str | None = None
    description: str | None = None
    endpoint: str
    authentication: Authentication
    healthcare_compliance: HealthcareCompliance

    capabilities: list[str] = Field(default_factory=list)
    data_mapping: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    supported_languages: list[str] = Field(default_factory=list)
    error_handling: ErrorHandling = Field(default_factory=ErrorHandling)
    encrypt_sensitive_data: bool = False

    @field_validator("endpoint")
    @classmethod
    def _validate_endpoint(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError("Invalid endpoint URL")
        return value

    @property
    def uses_https(self) -> bool:
        return urlparse(self.endpoint).scheme == "https"

    def sanitized(self) -> dict[str, Any]:
        """Configuration without authentication material or credential header values."""
        data = self.model_dump(mode="json", exclude={"authentication"})
        data["headers"] = {
            name: REDACTED if SECRET_HEADER_PATTERN.search(name) else value
            for name, value in self.headers.items()
        }
        return data

    def to_storage_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def format_validation_errors(error: PydanticValidationError) -> str:
    """Render pydantic errors as 'field.path: message; ...'."""
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_connector_config(
    value: "ConnectorConfig | dict[str, Any]",
    connector_id: str | None = None,
) -> ConnectorConfig:
    """
    Coerce input into a ConnectorConfig.

    Raises:
        ValidationError: Missing or malformed fields.
    """
    if isinstance(value, ConnectorConfig):
        config = value
    elif isinstance(value, dict):
        try:
            config = ConnectorConfig.model_validate(value)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid connector configuration: {format_validation_errors(e)}",
                details={"errors": [
                    {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                    for err in e.errors()
                ]},
            ) from e
    else:
        raise ValidationError(
            f"Connector configuration must be a mapping, got {type(value).__name__}"
        )

    if connector_id is not None and config.id != connector_id:
        config = config.model_copy(update={"id": connector_id})
    return config


# =============================================================================
# Partial Updates
# =============================================================================

def _resolve_field(model_cls: type[BaseModel], key: str) -> str | None:
    """Map a camelCase or snake_case key to the model's field name."""
    fields = model_cls.model_fields
    if key in fields:
        return key
    for name, info in fields.items():
        if info.alias == key:
            return name
        choices = info.validation_alias
        if isinstance(choices, AliasChoices) and key in choices.choices:
            return name
        if choices == key:
            return name
    return None


def _merge_model(model: BaseModel, updates: dict[str, Any]) -> dict[str, Any]:
    merged = model.model_dump()
    for key, value in updates.items():
        name = _resolve_field(type(model), key)
        if name is None:
            continue
        current = getattr(model, name)
        if isinstance(current, BaseModel) and isinstance(value, dict):
            # Switching auth scheme replaces the whole block
            if "type" in value and getattr(current, "type", None) != value["type"]:
                merged[name] = value
            else:
                merged[name] = _merge_model(current, value)
        elif isinstance(current, dict) and isinstance(value, dict):
            merged[name] = {**current, **value}
        else:
            merged[name] = value
    return merged


def merge_connector_config(config: ConnectorConfig, updates: dict[str, Any]) -> ConnectorConfig:
    """
    Apply a partial update, merging nested blocks field by field.

    Raises:
        ValidationError: The merged configuration is invalid.
    """
    if not isinstance(updates, dict):
        raise ValidationError(f"Configuration update must be a mapping, got {type(updates).__name__}")
    return parse_connector_config(_merge_model(config, updates))
