"""
Riskgate - Error taxonomy.

Every failure a caller can observe is one of these kinds. Each carries a
stable ``code`` and the HTTP status the API layer answers with.
"""

from __future__ import annotations

from typing import Any, Optional


class RiskgateError(Exception):
    """Base class for all expected failures."""

    code = "InternalError"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message}


class InvalidInput(RiskgateError):
    code = "InvalidInput"
    status_code = 400


class NotFound(RiskgateError):
    code = "NotFound"
    status_code = 404


class Expired(RiskgateError):
    code = "Expired"
    status_code = 410


class AlreadyVerified(RiskgateError):
    code = "AlreadyVerified"
    status_code = 400


class FingerprintMismatch(RiskgateError):
    code = "FingerprintMismatch"
    status_code = 403


class PolicyBlocked(RiskgateError):
    """Abuse or blacklist decision."""

    code = "PolicyBlocked"
    status_code = 403

    def __init__(self, reason: str, severity: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.severity = severity

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        data["severity"] = self.severity
        return data


class DependencyUnavailable(RiskgateError):
    """A cache backend or external provider could not be reached."""

    code = "DependencyUnavailable"
    status_code = 503


class PersistenceError(RiskgateError):
    code = "PersistenceError"
    status_code = 500
