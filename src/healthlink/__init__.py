"""
HealthLink: Remote Healthcare Connector Core

Registry and lifecycle management for stateful clients of remote
healthcare systems (EHR, FHIR, lab, imaging, pharmacy, audit, HIE)
with HIPAA/NPHIES compliance gating and encrypted configuration storage.
"""

__version__ = "0.1.0"
__author__ = "HealthLink Team"
