# errors.py — Domain error taxonomy with RD-DOMAIN-NUMBER codes
from typing import Any, Dict, Optional

# ============================================================
# ERROR CODE CATALOGUE
# RD-{DOMAIN}-{NUMBER}
# Domains: ISS (issues), ASG (assignments), USR (users), NTF (notifications), VAL, AUTH, SYS
# ============================================================

ERROR_CATALOGUE = {
    "RD-ISS-001": {"message": "Issue not found", "severity": "info", "http_status": 404},
    "RD-ISS-002": {"message": "Issue status does not permit this change", "severity": "warning", "http_status": 400},
    "RD-ISS-003": {"message": "Issue was modified concurrently", "severity": "warning", "http_status": 409},
    "RD-ASG-001": {"message": "Assignment not found", "severity": "info", "http_status": 404},
    "RD-ASG-002": {"message": "Assignment status does not permit this transition", "severity": "warning", "http_status": 400},
    "RD-ASG-003": {"message": "Assignment was modified concurrently", "severity": "warning", "http_status": 409},
    "RD-USR-001": {"message": "User not found", "severity": "info", "http_status": 404},
    "RD-USR-002": {"message": "Technician not found", "severity": "info", "http_status": 404},
    "RD-NTF-001": {"message": "Notification not found", "severity": "info", "http_status": 404},
    "RD-VAL-001": {"message": "Invalid input", "severity": "info", "http_status": 400},
    "RD-AUTH-001": {"message": "Not permitted", "severity": "warning", "http_status": 403},
    "RD-AUTH-002": {"message": "Not authenticated", "severity": "info", "http_status": 401},
    "RD-SYS-000": {"message": "Internal server error", "severity": "error", "http_status": 500},
    "RD-SYS-001": {"message": "Upstream service failure", "severity": "error", "http_status": 502},
}


class DeskError(Exception):
    """Base class for every error the core reports to its caller."""

    default_code = "RD-VAL-001"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, **context: Any):
        self.code = code or self.default_code
        entry = ERROR_CATALOGUE.get(self.code, {})
        self.message = message or entry.get("message", "Error")
        self.http_status = entry.get("http_status", 400)
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            body["context"] = self.context
        return body


class NotFoundError(DeskError):
    default_code = "RD-ISS-001"


class InvalidStateError(DeskError):
    default_code = "RD-ASG-002"


class ValidationError(DeskError):
    default_code = "RD-VAL-001"


class AuthorizationError(DeskError):
    default_code = "RD-AUTH-001"


class AuthenticationError(DeskError):
    default_code = "RD-AUTH-002"


class ConflictError(DeskError):
    default_code = "RD-ASG-003"


class UpstreamError(DeskError):
    """Notification relay or geocoder failure. Turned into a result where it is raised."""

    default_code = "RD-SYS-001"
