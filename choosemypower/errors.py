"""Error taxonomy for routing, plan cache and analytics operations"""

from typing import Any, Dict, Optional


class ChooseMyPowerError(Exception):
    """Base class for errors surfaced to API callers with a structured code"""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        error = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class InvalidInputError(ChooseMyPowerError):
    """Malformed ZIP or out-of-range parameter (client error)"""

    status_code = 400
    default_code = "INVALID_PARAMETER"


class CoverageGapError(ChooseMyPowerError):
    """No ZIP mapping row exists for a well-formed ZIP code"""

    status_code = 404
    default_code = "ZIP_NOT_FOUND"

    def __init__(self, zip_code: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message or f"No service territory mapping found for ZIP {zip_code}",
            details={"zip_code": zip_code, **(details or {})},
        )
        self.zip_code = zip_code


class UpstreamFetchError(ChooseMyPowerError):
    """Pricing API unreachable, timed out, or returned an unusable response"""

    status_code = 502
    default_code = "UPSTREAM_ERROR"

    def __init__(self, message: str, upstream_status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        merged = dict(details or {})
        if upstream_status is not None:
            merged["upstream_status"] = upstream_status
        super().__init__(message, details=merged)
        self.upstream_status = upstream_status


class DatastoreError(ChooseMyPowerError):
    """Connectivity or query failure against the persisted store"""

    status_code = 503
    default_code = "DATASTORE_ERROR"
