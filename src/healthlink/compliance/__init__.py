"""
HealthLink Compliance Module

- HIPAA / NPHIES / general rule sets
- Config-time and data-time validation
- Pluggable payload sensitivity classification
"""

from healthlink.compliance.classification import DataClassifier, KeywordClassifier
from healthlink.compliance.models import (
    ClassificationLevel,
    ComplianceFinding,
    ComplianceVerdict,
    DataClassification,
    Framework,
    OverallCompliance,
    RiskLevel,
    Severity,
    TransmissionVerdict,
)
from healthlink.compliance.rules import ComplianceRuleSet, GeneralRules, HIPAARules, NPHIESRules
from healthlink.compliance.validator import ComplianceValidator, determine_overall

__all__ = [
    "DataClassifier",
    "KeywordClassifier",
    "ClassificationLevel",
    "ComplianceFinding",
    "ComplianceVerdict",
    "DataClassification",
    "Framework",
    "OverallCompliance",
    "RiskLevel",
    "Severity",
    "TransmissionVerdict",
    "ComplianceRuleSet",
    "GeneralRules",
    "HIPAARules",
    "NPHIESRules",
    "ComplianceValidator",
    "determine_overall",
]
