"""
Payload Sensitivity Classification

Schema-less classification of outbound payloads. The validator only
depends on the DataClassifier interface, so a schema-based classifier
can replace the keyword scan without touching rule aggregation.
"""

from abc import ABC, abstractmethod
from typing import Any
import json

from healthlink.compliance.models import ClassificationLevel, DataClassification, RiskLevel


class DataClassifier(ABC):
    """Classifies a payload into PUBLIC / PII / PHI."""

    @abstractmethod
    def classify(self, payload: Any) -> DataClassification:
        pass


class KeywordClassifier(DataClassifier):
    """
    Keyword scan over the serialized payload.

    Matches field names and values alike, so a field literally named
    `diagnosis` marks the payload as PHI.
    """

    PHI_INDICATORS = (
        "patient", "medical", "diagnosis", "treatment", "medication",
        "allergy", "condition", "procedure", "observation", "encounter",
        "birthdate", "ssn", "medical_record_number", "mrn",
    )

    PII_INDICATORS = (
        "name", "address", "phone", "email", "identifier",
        "social_security", "passport", "license",
    )

    def __init__(
        self,
        phi_indicators: tuple[str, ...] | None = None,
        pii_indicators: tuple[str, ...] | None = None,
    ):
        self.phi_indicators = tuple(i.lower() for i in (phi_indicators or self.PHI_INDICATORS))
        self.pii_indicators = tuple(i.lower() for i in (pii_indicators or self.PII_INDICATORS))

    def classify(self, payload: Any) -> DataClassification:
        text = _serialize(payload).lower()

        phi_hits = [i for i in self.phi_indicators if i in text]
        pii_hits = [i for i in self.pii_indicators if i in text]

        if phi_hits:
            level, risk = ClassificationLevel.PHI, RiskLevel.HIGH
        elif pii_hits:
            level, risk = ClassificationLevel.PII, RiskLevel.MEDIUM
        else:
            level, risk = ClassificationLevel.PUBLIC, RiskLevel.LOW

        return DataClassification(
            level=level,
            contains_phi=bool(phi_hits),
            contains_pii=bool(pii_hits),
            sensitive_fields=tuple(phi_hits + pii_hits),
            risk_level=risk,
        )


def _serialize(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, default=str)
    except (TypeError, ValueError):
        return str(payload)
