"""
Healthcare Connector Templates

Pre-configured connector descriptors for common system kinds:
EHR, FHIR R4, audit, laboratory (LIS), radiology (RIS), pharmacy (PIS)
and health information exchange (HIE).

Templates are plain camelCase dicts accepted by ConnectorConfig.
"""

from dataclasses import dataclass, field
from typing import Any
import copy

from healthlink.errors import ValidationError
from healthlink.models import ConnectorType


@dataclass(frozen=True)
class ConnectorTemplate:
    type: ConnectorType
    title: str
    summary: str
    name: str
    description: str
    auth_type: str
    capabilities: tuple[str, ...]
    data_mapping: dict[str, str]
    headers: dict[str, str]
    error_handling: dict[str, int]
    compliance: dict[str, bool] = field(default_factory=dict)
    audit_required: bool = True


FHIR_JSON = {"Accept": "application/fhir+json", "Content-Type": "application/fhir+json"}


TEMPLATES: dict[ConnectorType, ConnectorTemplate] = {
    ConnectorType.EHR_SYSTEM: ConnectorTemplate(
        type=ConnectorType.EHR_SYSTEM,
        title="Electronic Health Record System",
        summary="Connect to EHR systems for patient data management",
        name="EHR System",
        description="Electronic Health Record system integration",
        auth_type="oauth2",
        capabilities=(
            "patient_lookup", "patient_create", "patient_update", "encounter_management",
            "clinical_documentation", "medication_management", "allergy_management",
            "problem_list_management",
        ),
        data_mapping={
            "patientSearch": "/api/v1/patients/search",
            "patientCreate": "/api/v1/patients",
            "patientUpdate": "/api/v1/patients/{id}",
            "encounterList": "/api/v1/encounters",
            "clinicalNotes": "/api/v1/clinical-notes",
            "medications": "/api/v1/medications",
            "allergies": "/api/v1/allergies",
            "problems": "/api/v1/problems",
        },
        headers={**FHIR_JSON, "X-EHR-System": "Generic", "X-Healthcare-Standard": "FHIR-R4"},
        error_handling={"retryAttempts": 3, "retryDelayMs": 2000, "timeoutMs": 30000},
    ),
    ConnectorType.FHIR_SERVER: ConnectorTemplate(
        type=ConnectorType.FHIR_SERVER,
        title="FHIR R4 Server",
        summary="Connect to FHIR R4 compliant healthcare servers",
        name="FHIR Server",
        description="FHIR R4 compliant server integration",
        auth_type="bearer",
        capabilities=(
            "resource_crud", "search_operations", "batch_operations", "transaction_operations",
            "terminology_services", "capability_statement", "patient_everything",
            "encounter_everything",
        ),
        data_mapping={
            "patient": "/Patient",
            "encounter": "/Encounter",
            "observation": "/Observation",
            "condition": "/Condition",
            "medication": "/Medication",
            "medicationRequest": "/MedicationRequest",
            "allergyIntolerance": "/AllergyIntolerance",
            "diagnosticReport": "/DiagnosticReport",
            "procedure": "/Procedure",
            "immunization": "/Immunization",
            "careTeam": "/CareTeam",
            "carePlan": "/CarePlan",
            "search": "/{resourceType}",
            "searchById": "/{resourceType}/{id}",
            "searchByIdentifier": "/{resourceType}?identifier={identifier}",
            "patientEverything": "/Patient/{id}/$everything",
            "encounterEverything": "/Encounter/{id}/$everything",
            "capabilityStatement": "/metadata",
            "codeSystemLookup": "/CodeSystem/$lookup",
            "valueSetExpand": "/ValueSet/$expand",
            "conceptMapTranslate": "/ConceptMap/$translate",
        },
        headers={**FHIR_JSON, "Prefer": "return=representation", "X-FHIR-Version": "4.0.1"},
        error_handling={"retryAttempts": 3, "retryDelayMs": 1500, "timeoutMs": 25000},
        compliance={"fhirR4": True},
    ),
    ConnectorType.AUDIT_SYSTEM: ConnectorTemplate(
        type=ConnectorType.AUDIT_SYSTEM,
        title="Audit and Compliance System",
        summary="Connect to healthcare audit and logging systems",
        name="Audit System",
        description="Healthcare audit and compliance logging system",
        auth_type="apikey",
        capabilities=(
            "audit_log_creation", "audit_log_query", "compliance_reporting", "access_monitoring",
            "breach_detection", "user_activity_tracking", "data_access_logging",
            "system_event_logging",
        ),
        data_mapping={
            "createAuditLog": "/api/v1/audit-logs",
            "queryAuditLogs": "/api/v1/audit-logs/search",
            "getComplianceReport": "/api/v1/reports/compliance",
            "getUserActivity": "/api/v1/reports/user-activity",
            "getAccessReport": "/api/v1/reports/access",
            "getBreachReport": "/api/v1/reports/breach",
            "systemEvents": "/api/v1/system-events",
            "userSessions": "/api/v1/user-sessions",
        },
        headers={
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Audit-Version": "1.0",
            "X-Compliance-Level": "HIPAA",
        },
        error_handling={"retryAttempts": 5, "retryDelayMs": 1000, "timeoutMs": 15000},
        # The audit system is the audit sink itself
        audit_required=False,
    ),
    ConnectorType.LIS_SYSTEM: ConnectorTemplate(
        type=ConnectorType.LIS_SYSTEM,
        title="Laboratory Information System",
        summary="Connect to laboratory systems for test results",
        name="Laboratory Information System",
        description="Laboratory Information System integration",
        auth_type="oauth2",
        capabilities=(
            "lab_order_management", "result_retrieval", "specimen_tracking", "quality_control",
            "reference_ranges", "lab_report_generation", "critical_value_alerts",
            "test_catalog_management",
        ),
        data_mapping={
            "labOrders": "/api/v1/lab-orders",
            "labResults": "/api/v1/lab-results",
            "specimens": "/api/v1/specimens",
            "testCatalog": "/api/v1/test-catalog",
            "referenceRanges": "/api/v1/reference-ranges",
            "qualityControl": "/api/v1/quality-control",
            "criticalValues": "/api/v1/critical-values",
            "labReports": "/api/v1/reports",
        },
        headers={**FHIR_JSON, "X-LIS-Version": "1.0", "X-Lab-Standard": "HL7-FHIR"},
        error_handling={"retryAttempts": 3, "retryDelayMs": 2500, "timeoutMs": 35000},
        compliance={"clia": True},
    ),
    ConnectorType.RIS_SYSTEM: ConnectorTemplate(
        type=ConnectorType.RIS_SYSTEM,
        title="Radiology Information System",
        summary="Connect to radiology systems for imaging data",
        name="Radiology Information System",
        description="Radiology Information System integration",
        auth_type="oauth2",
        capabilities=(
            "imaging_order_management", "study_scheduling", "image_retrieval",
            "report_management", "dicom_integration", "modality_worklist",
            "radiation_dose_tracking", "image_sharing",
        ),
        data_mapping={
            "imagingOrders": "/api/v1/imaging-orders",
            "studies": "/api/v1/studies",
            "images": "/api/v1/images",
            "reports": "/api/v1/reports",
            "modalityWorklist": "/api/v1/modality-worklist",
            "radiationDose": "/api/v1/radiation-dose",
            "dicomMetadata": "/api/v1/dicom/metadata",
            "imageSharing": "/api/v1/image-sharing",
        },
        headers={
            "Accept": "application/dicom+json",
            "Content-Type": "application/dicom+json",
            "X-RIS-Version": "1.0",
            "X-DICOM-Standard": "3.0",
        },
        # Large image payloads: fewer retries, longer timeout
        error_handling={"retryAttempts": 2, "retryDelayMs": 3000, "timeoutMs": 60000},
        compliance={"dicom": True},
    ),
    ConnectorType.PIS_SYSTEM: ConnectorTemplate(
        type=ConnectorType.PIS_SYSTEM,
        title="Pharmacy Information System",
        summary="Connect to pharmacy systems for medication data",
        name="Pharmacy Information System",
        description="Pharmacy Information System integration",
        auth_type="oauth2",
        capabilities=(
            "prescription_management", "drug_interaction_checking", "inventory_management",
            "dispensing_records", "formulary_management", "prior_authorization",
            "medication_therapy_management", "controlled_substance_tracking",
        ),
        data_mapping={
            "prescriptions": "/api/v1/prescriptions",
            "medications": "/api/v1/medications",
            "drugInteractions": "/api/v1/drug-interactions",
            "inventory": "/api/v1/inventory",
            "dispensing": "/api/v1/dispensing",
            "formulary": "/api/v1/formulary",
            "priorAuth": "/api/v1/prior-authorization",
            "controlledSubstances": "/api/v1/controlled-substances",
        },
        headers={**FHIR_JSON, "X-PIS-Version": "1.0", "X-Pharmacy-Standard": "NCPDP"},
        error_handling={"retryAttempts": 3, "retryDelayMs": 2000, "timeoutMs": 20000},
        compliance={"dea": True},
    ),
    ConnectorType.HIE_SYSTEM: ConnectorTemplate(
        type=ConnectorType.HIE_SYSTEM,
        title="Health Information Exchange",
        summary="Connect to HIE systems for cross-enterprise data sharing",
        name="Health Information Exchange",
        description="Health Information Exchange system integration",
        auth_type="oauth2",
        capabilities=(
            "patient_discovery", "document_query", "document_retrieve", "care_summary_exchange",
            "clinical_data_sharing", "consent_management", "provider_directory",
            "cross_enterprise_sharing",
        ),
        data_mapping={
            "patientDiscovery": "/api/v1/patient-discovery",
            "documentQuery": "/api/v1/document-query",
            "documentRetrieve": "/api/v1/document-retrieve",
            "careSummary": "/api/v1/care-summary",
            "clinicalData": "/api/v1/clinical-data",
            "consent": "/api/v1/consent",
            "providerDirectory": "/api/v1/provider-directory",
            "crossEnterprise": "/api/v1/cross-enterprise",
        },
        headers={**FHIR_JSON, "X-HIE-Version": "1.0", "X-Exchange-Standard": "IHE-FHIR"},
        error_handling={"retryAttempts": 2, "retryDelayMs": 5000, "timeoutMs": 45000},
        compliance={"directTrust": False},
    ),
}


def list_templates() -> list[dict[str, str]]:
    """Catalog of available template types."""
    return [
        {"type": t.type.value, "name": t.title, "description": t.summary}
        for t in TEMPLATES.values()
    ]


def create_template(
    system_type: ConnectorType | str,
    endpoint: str | None = None,
    *,
    name: str | None = None,
    auth_type: str | None = None,
    authentication: dict[str, Any] | None = None,
    nphies_compliant: bool = False,
    headers: dict[str, str] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    """
    Build a connector descriptor from a template.

    Args:
        system_type: One of the ConnectorType values
        endpoint: Base URL of the remote system
        name: Display name (defaults to the template's)
        auth_type: Authentication scheme (defaults to the template's)
        authentication: Credentials merged into the auth block
        nphies_compliant: Declare NPHIES in addition to HIPAA
        headers: Extra or replacement headers
        **overrides: Top-level descriptor keys applied last

    Raises:
        ValidationError: Unknown template type.
    """
    try:
        template = TEMPLATES[ConnectorType(system_type)]
    except ValueError as e:
        raise ValidationError(f"Unknown template type: {system_type}") from e

    compliance = {
        "hipaa": True,
        "nphies": nphies_compliant,
        "auditRequired": template.audit_required,
        "encryptionRequired": True,
        **template.compliance,
    }

    descriptor: dict[str, Any] = {
        "type": template.type.value,
        "name": name or template.name,
        "description": template.description,
        "endpoint": endpoint,
        "authentication": {"type": auth_type or template.auth_type, **(authentication or {})},
        "healthcareCompliance": compliance,
        "capabilities": list(template.capabilities),
        "dataMapping": copy.deepcopy(template.data_mapping),
        "headers": {**template.headers, **(headers or {})},
        "errorHandling": dict(template.error_handling),
        "encryptSensitiveData": True,
    }
    descriptor.update(overrides)
    return descriptor


def validate_template(template: dict[str, Any]) -> bool:
    """
    Check a template has the fields registration requires.

    Raises:
        ValidationError: A required field is missing or no framework is declared.
    """
    for key in ("type", "endpoint", "authentication", "healthcareCompliance"):
        if not template.get(key):
            raise ValidationError(f"Missing required template field: {key}")

    compliance = template["healthcareCompliance"]
    if not compliance.get("hipaa") and not compliance.get("nphies"):
        raise ValidationError("Template must specify HIPAA or NPHIES compliance")

    return True
