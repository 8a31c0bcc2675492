"""
Framework Rule Sets

Static rules evaluated against connector configurations:
- HIPAA: encryption, audit logging, strong authentication, HTTPS
- NPHIES: encryption for PHI, Arabic / Saudi data recommendations
- GENERAL: retry and timeout sanity checks
"""

from abc import ABC
from typing import Any

from healthlink.compliance.models import ComplianceFinding, Framework, RuleResult, Severity
from healthlink.models import AuthType, ConnectorConfig, ConnectorType


# Auth schemes accepted as strong access control for configuration
CONFIG_STRONG_AUTH = frozenset({AuthType.OAUTH2.value, AuthType.BEARER.value, AuthType.APIKEY.value})

# Auth schemes accepted for transmitting PHI
PHI_STRONG_AUTH = frozenset({AuthType.OAUTH2.value, AuthType.BEARER.value})

MAX_RETRY_ATTEMPTS = 5
MAX_TIMEOUT_MS = 60000


class ComplianceRuleSet(ABC):
    """Rules for one compliance framework."""

    framework: str = Framework.GENERAL.value

    def validate_config(self, config: ConnectorConfig) -> RuleResult:
        return RuleResult()

    def validate_data(self, payload: Any, config: ConnectorConfig, operation: str) -> RuleResult:
        return RuleResult()

    def _finding(self, rule: str, severity: Severity, message: str) -> ComplianceFinding:
        return ComplianceFinding(
            rule=rule,
            severity=severity,
            message=message,
            framework=self.framework,
        )


class HIPAARules(ComplianceRuleSet):
    framework = Framework.HIPAA.value

    def validate_config(self, config: ConnectorConfig) -> RuleResult:
        result = RuleResult()
        compliance = config.healthcare_compliance

        if not compliance.encryption_required:
            result.violations.append(self._finding(
                "HIPAA_ENCRYPTION", Severity.HIGH,
                "HIPAA requires encryption for PHI transmission",
            ))
        else:
            result.passed.append("HIPAA_ENCRYPTION")

        # Audit systems are the audit trail themselves
        if not compliance.audit_required and config.type != ConnectorType.AUDIT_SYSTEM:
            result.violations.append(self._finding(
                "HIPAA_AUDIT", Severity.HIGH,
                "HIPAA requires comprehensive audit logging",
            ))
        else:
            result.passed.append("HIPAA_AUDIT")

        if config.authentication.type not in CONFIG_STRONG_AUTH:
            result.violations.append(self._finding(
                "HIPAA_ACCESS_CONTROL", Severity.HIGH,
                "HIPAA requires strong authentication mechanisms",
            ))
        else:
            result.passed.append("HIPAA_ACCESS_CONTROL")

        if not config.uses_https:
            result.violations.append(self._finding(
                "HIPAA_HTTPS", Severity.HIGH,
                "HIPAA requires HTTPS for data transmission",
            ))
        else:
            result.passed.append("HIPAA_HTTPS")

        return result


class NPHIESRules(ComplianceRuleSet):
    """Only applies to connectors that declare the nphies flag."""

    framework = Framework.NPHIES.value

    def validate_config(self, config: ConnectorConfig) -> RuleResult:
        result = RuleResult()
        compliance = config.healthcare_compliance

        if not compliance.nphies:
            return result

        if not compliance.encryption_required:
            result.violations.append(self._finding(
                "NPHIES_ENCRYPTION", Severity.HIGH,
                "NPHIES connectors handle PHI and must require encryption",
            ))
        else:
            result.passed.append("NPHIES_ENCRYPTION")

        if compliance.arabic_support or "ar" in config.supported_languages:
            result.passed.append("NPHIES_ARABIC_SUPPORT")
        else:
            result.warnings.append(self._finding(
                "NPHIES_ARABIC_SUPPORT", Severity.MEDIUM,
                "NPHIES recommends Arabic language support",
            ))

        if compliance.saudi_data_mapping or config.data_mapping.get("saudiSpecific"):
            result.passed.append("NPHIES_SAUDI_DATA")
        else:
            result.warnings.append(self._finding(
                "NPHIES_SAUDI_DATA", Severity.MEDIUM,
                "NPHIES may require Saudi-specific data fields",
            ))

        return result


class GeneralRules(ComplianceRuleSet):
    framework = Framework.GENERAL.value

    def validate_config(self, config: ConnectorConfig) -> RuleResult:
        result = RuleResult()
        error_handling = config.error_handling

        if error_handling.retry_attempts > MAX_RETRY_ATTEMPTS:
            result.warnings.append(self._finding(
                "GENERAL_RETRY_LIMIT", Severity.LOW,
                "High retry attempts may impact system stability",
            ))
        else:
            result.passed.append("GENERAL_RETRY_LIMIT")

        if error_handling.timeout_ms > MAX_TIMEOUT_MS:
            result.warnings.append(self._finding(
                "GENERAL_TIMEOUT", Severity.LOW,
                "Long timeouts may impact user experience",
            ))
        else:
            result.passed.append("GENERAL_TIMEOUT")

        return result


DEFAULT_RULE_SETS: dict[str, type[ComplianceRuleSet]] = {
    Framework.HIPAA.value: HIPAARules,
    Framework.NPHIES.value: NPHIESRules,
    Framework.GENERAL.value: GeneralRules,
}
