"""
Healthcare Compliance Validator

Stateless rule engine producing verdicts for:
- Connector configurations (config-time)
- Outbound payloads (data-time)

Aggregation: any HIGH violation is NON_COMPLIANT; otherwise any MEDIUM
violation is NON_COMPLIANT in strict mode and CONDITIONALLY_COMPLIANT
outside it; no violations is COMPLIANT. Warnings never change the outcome.
"""

from typing import Any, Callable, Iterable

import structlog

from healthlink.compliance.classification import DataClassifier, KeywordClassifier
from healthlink.compliance.models import (
    ComplianceFinding,
    ComplianceVerdict,
    Framework,
    FrameworkResult,
    OverallCompliance,
    RuleResult,
    Severity,
    TransmissionVerdict,
)
from healthlink.compliance.rules import DEFAULT_RULE_SETS, PHI_STRONG_AUTH, ComplianceRuleSet
from healthlink.config import get_settings
from healthlink.models import ConnectorConfig, parse_connector_config

logger = structlog.get_logger(__name__)


# (payload, operation) -> whether the disclosure is within scope
MinimumNecessaryPolicy = Callable[[Any, str], bool]


def allow_all(payload: Any, operation: str) -> bool:
    """Default minimum-necessary policy: every disclosure is in scope."""
    return True


def determine_overall(violations: Iterable[ComplianceFinding], strict_mode: bool) -> OverallCompliance:
    severities = {v.severity for v in violations}

    if Severity.HIGH in severities:
        return OverallCompliance.NON_COMPLIANT

    if Severity.MEDIUM in severities:
        if strict_mode:
            return OverallCompliance.NON_COMPLIANT
        return OverallCompliance.CONDITIONALLY_COMPLIANT

    return OverallCompliance.COMPLIANT


class ComplianceValidator:
    """
    Validates connectors and payloads against HIPAA, NPHIES and general rules.

    Holds only construction-time configuration, so one instance can be
    shared by every connector and called concurrently.
    """

    def __init__(
        self,
        frameworks: list[str] | None = None,
        strict_mode: bool | None = None,
        classifier: DataClassifier | None = None,
        minimum_necessary: MinimumNecessaryPolicy | None = None,
        rule_sets: dict[str, ComplianceRuleSet] | None = None,
    ):
        settings = get_settings().compliance

        self.frameworks = [f.strip().upper() for f in (frameworks or settings.frameworks) if f.strip()]
        self.strict_mode = settings.strict_mode if strict_mode is None else strict_mode
        self.classifier = classifier or KeywordClassifier()
        self.minimum_necessary = minimum_necessary or allow_all

        if rule_sets is None:
            rule_sets = {name: cls() for name, cls in DEFAULT_RULE_SETS.items()}
        self._rule_sets = rule_sets

    # =========================================================================
    # Config-time
    # =========================================================================

    def validate_connector_compliance(
        self,
        config: ConnectorConfig | dict,
        frameworks: list[str] | None = None,
    ) -> ComplianceVerdict:
        """Run each requested framework's rule set against a configuration."""
        config = parse_connector_config(config)

        violations: list[ComplianceFinding] = []
        warnings: list[ComplianceFinding] = []
        passed: list[str] = []
        per_framework: dict[str, FrameworkResult] = {}

        for name in self._resolve_frameworks(frameworks or self.frameworks):
            result = self._run_config_rules(name, config)
            per_framework[name] = FrameworkResult(
                framework=name,
                compliant=not result.violations,
                violations=tuple(result.violations),
                warnings=tuple(result.warnings),
                passed=tuple(result.passed),
            )
            violations.extend(result.violations)
            warnings.extend(result.warnings)
            passed.extend(result.passed)

        verdict = ComplianceVerdict(
            overall=determine_overall(violations, self.strict_mode),
            violations=tuple(violations),
            warnings=tuple(warnings),
            passed=tuple(passed),
            frameworks=per_framework,
        )

        logger.debug(
            "Connector compliance validated",
            connector_id=config.id,
            overall=verdict.overall.value,
            violations=len(verdict.violations),
            warnings=len(verdict.warnings),
        )
        return verdict

    def _resolve_frameworks(self, requested: Iterable[str]) -> list[str]:
        """Known frameworks in request order, unknown ones mapped to GENERAL, GENERAL always last."""
        resolved: list[str] = []
        for name in requested:
            name = name.strip().upper()
            if name not in self._rule_sets:
                logger.warning("Unknown compliance framework, using general rules", framework=name)
                name = Framework.GENERAL.value
            if name not in resolved:
                resolved.append(name)

        if Framework.GENERAL.value not in resolved and Framework.GENERAL.value in self._rule_sets:
            resolved.append(Framework.GENERAL.value)
        return resolved

    def _run_config_rules(self, name: str, config: ConnectorConfig) -> RuleResult:
        try:
            return self._rule_sets[name].validate_config(config)
        except Exception as e:
            logger.error("Framework validation failed", framework=name, error=str(e))
            return RuleResult(violations=[ComplianceFinding(
                rule="FRAMEWORK_VALIDATION",
                severity=Severity.HIGH,
                message=f"Framework validation error: {e}",
                framework=name,
            )])

    # =========================================================================
    # Data-time
    # =========================================================================

    def validate_data_transmission(
        self,
        payload: Any,
        config: ConnectorConfig | dict,
        operation: str = "READ",
    ) -> TransmissionVerdict:
        """Classify a payload and check it may be sent through this connector."""
        config = parse_connector_config(config)
        compliance = config.healthcare_compliance

        classification = self.classifier.classify(payload)
        contains_phi = classification.contains_phi

        violations: list[ComplianceFinding] = []
        warnings: list[ComplianceFinding] = []

        if contains_phi:
            violations.extend(self._check_phi_handling(payload, config, operation))

        for name in self.frameworks:
            rule_set = self._rule_sets.get(name)
            if rule_set is None:
                continue
            try:
                result = rule_set.validate_data(payload, config, operation)
            except Exception as e:
                logger.error("Framework data validation failed", framework=name, error=str(e))
                result = RuleResult(violations=[ComplianceFinding(
                    rule="FRAMEWORK_VALIDATION",
                    severity=Severity.HIGH,
                    message=f"Framework validation error: {e}",
                    framework=name,
                )])
            violations.extend(result.violations)
            warnings.extend(result.warnings)

        return TransmissionVerdict(
            compliant=not violations,
            overall=determine_overall(violations, self.strict_mode),
            violations=tuple(violations),
            warnings=tuple(warnings),
            data_classification=classification,
            encryption_required=contains_phi or compliance.encryption_required,
            audit_required=contains_phi or compliance.audit_required,
        )

    def _check_phi_handling(
        self,
        payload: Any,
        config: ConnectorConfig,
        operation: str,
    ) -> list[ComplianceFinding]:
        findings = []
        hipaa = Framework.HIPAA.value

        if not self.minimum_necessary(payload, operation):
            findings.append(ComplianceFinding(
                rule="MINIMUM_NECESSARY",
                severity=Severity.HIGH,
                message="PHI disclosure violates minimum necessary standard",
                framework=hipaa,
            ))

        if config.authentication.type not in PHI_STRONG_AUTH:
            findings.append(ComplianceFinding(
                rule="ACCESS_CONTROLS",
                severity=Severity.HIGH,
                message="Inadequate access controls for PHI transmission",
                framework=hipaa,
            ))

        if not config.healthcare_compliance.encryption_required:
            findings.append(ComplianceFinding(
                rule="ENCRYPTION_REQUIRED",
                severity=Severity.HIGH,
                message="PHI transmission requires encryption",
                framework=hipaa,
            ))

        return findings
