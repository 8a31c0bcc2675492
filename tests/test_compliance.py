"""
Tests for the healthcare compliance validator.

Covers config-time rule sets (HIPAA, NPHIES, general), severity
aggregation and data-time PHI classification.
"""

import pytest

from healthlink.compliance import (
    ClassificationLevel,
    ComplianceFinding,
    ComplianceValidator,
    KeywordClassifier,
    OverallCompliance,
    Severity,
    determine_overall,
)
from healthlink.compliance.rules import ComplianceRuleSet

from conftest import make_config


def finding(severity: Severity, rule: str = "RULE") -> ComplianceFinding:
    return ComplianceFinding(rule=rule, severity=severity, message="m", framework="TEST")


@pytest.fixture
def validator():
    return ComplianceValidator(frameworks=["HIPAA", "NPHIES"], strict_mode=True)


class TestAggregation:
    """Overall outcome from violation severities."""

    def test_no_violations_is_compliant(self):
        assert determine_overall([], strict_mode=True) == OverallCompliance.COMPLIANT

    def test_high_always_wins(self):
        violations = [finding(Severity.MEDIUM), finding(Severity.HIGH), finding(Severity.LOW)]
        assert determine_overall(violations, strict_mode=False) == OverallCompliance.NON_COMPLIANT
        assert determine_overall(violations, strict_mode=True) == OverallCompliance.NON_COMPLIANT

    def test_medium_depends_on_strict_mode(self):
        violations = [finding(Severity.MEDIUM)]
        assert determine_overall(violations, strict_mode=True) == OverallCompliance.NON_COMPLIANT
        assert determine_overall(violations, strict_mode=False) == OverallCompliance.CONDITIONALLY_COMPLIANT

    def test_low_only_is_compliant(self):
        assert determine_overall([finding(Severity.LOW)], strict_mode=True) == OverallCompliance.COMPLIANT


class TestConnectorCompliance:
    """Config-time validation."""

    def test_compliant_config(self, validator):
        verdict = validator.validate_connector_compliance(make_config())

        assert verdict.overall == OverallCompliance.COMPLIANT
        assert verdict.violations == ()
        assert "HIPAA_ENCRYPTION" in verdict.passed
        assert "HIPAA_HTTPS" in verdict.passed
        assert set(verdict.frameworks) == {"HIPAA", "NPHIES", "GENERAL"}

    def test_missing_encryption_is_high(self, validator):
        config = make_config(
            endpoint="https://x",
            healthcareCompliance={"hipaa": True, "encryptionRequired": False, "auditRequired": True},
        )

        verdict = validator.validate_connector_compliance(config)

        assert verdict.overall == OverallCompliance.NON_COMPLIANT
        rules = {v.rule: v for v in verdict.violations}
        assert rules["HIPAA_ENCRYPTION"].severity == Severity.HIGH
        assert rules["HIPAA_ENCRYPTION"].framework == "HIPAA"

    def test_http_endpoint_violates_hipaa(self, validator):
        verdict = validator.validate_connector_compliance(make_config(endpoint="http://fhir.test.local"))
        assert "HIPAA_HTTPS" in [v.rule for v in verdict.violations]

    def test_basic_auth_is_weak(self, validator):
        config = make_config(authentication={"type": "basic", "username": "u", "password": "p"})
        verdict = validator.validate_connector_compliance(config)
        assert "HIPAA_ACCESS_CONTROL" in [v.rule for v in verdict.violations]

    def test_audit_system_may_skip_audit(self, validator):
        config = make_config(
            type="audit_system",
            authentication={"type": "apikey", "key": "k"},
            healthcareCompliance={"hipaa": True, "encryptionRequired": True, "auditRequired": False},
        )
        verdict = validator.validate_connector_compliance(config)
        assert verdict.overall == OverallCompliance.COMPLIANT

    def test_nphies_recommendations_are_warnings(self, validator):
        config = make_config(healthcareCompliance={
            "hipaa": True, "nphies": True, "encryptionRequired": True, "auditRequired": True,
        })

        verdict = validator.validate_connector_compliance(config)

        warning_rules = {w.rule for w in verdict.warnings}
        assert {"NPHIES_ARABIC_SUPPORT", "NPHIES_SAUDI_DATA"} <= warning_rules
        assert verdict.overall == OverallCompliance.COMPLIANT

    def test_nphies_arabic_support_passes(self, validator):
        config = make_config(
            supportedLanguages=["en", "ar"],
            healthcareCompliance={
                "nphies": True, "encryptionRequired": True, "auditRequired": True, "saudiDataMapping": True,
            },
        )
        verdict = validator.validate_connector_compliance(config, frameworks=["NPHIES"])
        assert "NPHIES_ARABIC_SUPPORT" in verdict.passed
        assert "NPHIES_SAUDI_DATA" in verdict.passed

    def test_general_limits_are_low_warnings(self, validator):
        config = make_config(errorHandling={"retryAttempts": 8, "retryDelayMs": 0, "timeoutMs": 90000})

        verdict = validator.validate_connector_compliance(config)

        warnings = {w.rule: w.severity for w in verdict.warnings}
        assert warnings["GENERAL_RETRY_LIMIT"] == Severity.LOW
        assert warnings["GENERAL_TIMEOUT"] == Severity.LOW
        assert verdict.overall == OverallCompliance.COMPLIANT

    def test_unknown_framework_uses_general_rules(self, validator):
        verdict = validator.validate_connector_compliance(make_config(), frameworks=["GDPR"])
        assert list(verdict.frameworks) == ["GENERAL"]

    def test_failing_rule_set_becomes_violation(self):
        class BrokenRules(ComplianceRuleSet):
            framework = "BROKEN"

            def validate_config(self, config):
                raise RuntimeError("rule engine down")

        validator = ComplianceValidator(frameworks=["BROKEN"], rule_sets={"BROKEN": BrokenRules()})

        verdict = validator.validate_connector_compliance(make_config())

        assert verdict.overall == OverallCompliance.NON_COMPLIANT
        assert verdict.violations[0].rule == "FRAMEWORK_VALIDATION"

    def test_verdicts_are_fresh(self, validator):
        first = validator.validate_connector_compliance(make_config())
        second = validator.validate_connector_compliance(make_config())
        assert first is not second
        with pytest.raises(Exception):
            first.overall = OverallCompliance.NON_COMPLIANT


class TestDataTransmission:
    """Data-time validation and PHI forcing."""

    def test_phi_forces_encryption_and_audit(self, validator):
        config = make_config(healthcareCompliance={
            "hipaa": True, "encryptionRequired": False, "auditRequired": False,
        })

        verdict = validator.validate_data_transmission({"diagnosis": "J45"}, config, "READ")

        assert verdict.data_classification.contains_phi is True
        assert verdict.data_classification.level == ClassificationLevel.PHI
        assert verdict.encryption_required is True
        assert verdict.audit_required is True
        assert "ENCRYPTION_REQUIRED" in [v.rule for v in verdict.violations]
        assert verdict.overall == OverallCompliance.NON_COMPLIANT

    def test_phi_over_strong_auth_is_compliant(self, validator):
        verdict = validator.validate_data_transmission({"patientId": "p-1"}, make_config(), "READ")

        assert verdict.compliant is True
        assert verdict.overall == OverallCompliance.COMPLIANT

    def test_phi_over_apikey_fails_access_controls(self, validator):
        config = make_config(authentication={"type": "apikey", "key": "k"})
        verdict = validator.validate_data_transmission({"patient": "p-1"}, config, "READ")
        assert "ACCESS_CONTROLS" in [v.rule for v in verdict.violations]

    def test_minimum_necessary_policy(self):
        validator = ComplianceValidator(minimum_necessary=lambda payload, operation: operation != "EXPORT")

        ok = validator.validate_data_transmission({"patient": "p"}, make_config(), "READ")
        blocked = validator.validate_data_transmission({"patient": "p"}, make_config(), "EXPORT")

        assert ok.compliant is True
        assert "MINIMUM_NECESSARY" in [v.rule for v in blocked.violations]

    def test_public_payload(self, validator):
        config = make_config(healthcareCompliance={"hipaa": True, "encryptionRequired": True})

        verdict = validator.validate_data_transmission({"status": "ok"}, config, "READ")

        assert verdict.data_classification.level == ClassificationLevel.PUBLIC
        assert verdict.audit_required is False
        assert verdict.compliant is True


class TestKeywordClassifier:

    def test_pii_without_phi(self):
        result = KeywordClassifier().classify({"email": "a@b.c"})
        assert result.level == ClassificationLevel.PII
        assert result.contains_pii is True
        assert result.contains_phi is False

    def test_custom_indicators(self):
        classifier = KeywordClassifier(phi_indicators=("genome",))
        assert classifier.classify({"genome": "..."}).contains_phi is True
        assert classifier.classify({"diagnosis": "..."}).contains_phi is False
