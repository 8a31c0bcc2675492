"""
HealthLink Errors

Every failure surfaced by the connector core is one of these types.
"""

from typing import Any


class HealthlinkError(Exception):
    """Base error for the connector core."""

    code = "HEALTHLINK_ERROR"

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(HealthlinkError):
    """Malformed configuration or input, rejected before any I/O."""

    code = "VALIDATION_ERROR"


class ComplianceViolation(HealthlinkError):
    """A blocking compliance rule failed."""

    code = "COMPLIANCE_VIOLATION"

    def __init__(self, message: str, violations: list | None = None, **kwargs):
        self.violations = list(violations or [])
        details = kwargs.pop("details", None) or {}
        details.setdefault("rules", self.rules)
        details.setdefault("frameworks", self.frameworks)
        super().__init__(message, details=details, **kwargs)

    @property
    def rules(self) -> list[str]:
        return [v.rule for v in self.violations]

    @property
    def frameworks(self) -> list[str]:
        seen: list[str] = []
        for v in self.violations:
            if v.framework not in seen:
                seen.append(v.framework)
        return seen


class NotFoundError(HealthlinkError):
    """Unknown connector id."""

    code = "NOT_FOUND"


class ConnectorConnectionError(HealthlinkError):
    """Transport-level failure talking to a remote system."""

    code = "CONNECTION_ERROR"

    def __init__(self, message: str, status_code: int | None = None, **kwargs):
        self.status_code = status_code
        details = kwargs.pop("details", None) or {}
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__(message, details=details, **kwargs)


class IntegrityError(HealthlinkError):
    """Ciphertext failed authentication or is malformed."""

    code = "INTEGRITY_ERROR"


class StorageError(HealthlinkError):
    """The configuration storage medium failed."""

    code = "STORAGE_ERROR"
