"""
Compliance Result Models

Verdicts are frozen value objects: every validation call produces a
fresh one and nothing mutates it afterwards.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """HIGH blocks, MEDIUM blocks in strict mode, LOW is advisory."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class OverallCompliance(str, Enum):
    COMPLIANT = "COMPLIANT"
    CONDITIONALLY_COMPLIANT = "CONDITIONALLY_COMPLIANT"
    NON_COMPLIANT = "NON_COMPLIANT"


class Framework(str, Enum):
    HIPAA = "HIPAA"
    NPHIES = "NPHIES"
    GENERAL = "GENERAL"


class ClassificationLevel(str, Enum):
    PUBLIC = "PUBLIC"
    PII = "PII"
    PHI = "PHI"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ComplianceFinding(BaseModel):
    """A single violation or warning."""
    model_config = ConfigDict(frozen=True)

    rule: str
    severity: Severity
    message: str
    framework: str


class RuleResult(BaseModel):
    """Output of one rule set."""
    violations: list[ComplianceFinding] = Field(default_factory=list)
    warnings: list[ComplianceFinding] = Field(default_factory=list)
    passed: list[str] = Field(default_factory=list)


class FrameworkResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    framework: str
    compliant: bool
    violations: tuple[ComplianceFinding, ...] = ()
    warnings: tuple[ComplianceFinding, ...] = ()
    passed: tuple[str, ...] = ()


class ComplianceVerdict(BaseModel):
    """Config-time verdict across the requested frameworks."""
    model_config = ConfigDict(frozen=True)

    overall: OverallCompliance
    violations: tuple[ComplianceFinding, ...] = ()
    warnings: tuple[ComplianceFinding, ...] = ()
    passed: tuple[str, ...] = ()
    frameworks: dict[str, FrameworkResult] = Field(default_factory=dict)
    validated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def high_violations(self) -> list[ComplianceFinding]:
        return [v for v in self.violations if v.severity == Severity.HIGH]


class DataClassification(BaseModel):
    """Sensitivity of an outbound payload. Never persisted."""
    model_config = ConfigDict(frozen=True)

    level: ClassificationLevel = ClassificationLevel.PUBLIC
    contains_phi: bool = False
    contains_pii: bool = False
    sensitive_fields: tuple[str, ...] = ()
    risk_level: RiskLevel = RiskLevel.LOW


class TransmissionVerdict(BaseModel):
    """Data-time verdict for one outbound payload."""
    model_config = ConfigDict(frozen=True)

    compliant: bool
    overall: OverallCompliance
    violations: tuple[ComplianceFinding, ...] = ()
    warnings: tuple[ComplianceFinding, ...] = ()
    data_classification: DataClassification
    encryption_required: bool
    audit_required: bool
    validated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def high_violations(self) -> list[ComplianceFinding]:
        return [v for v in self.violations if v.severity == Severity.HIGH]
