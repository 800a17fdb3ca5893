# errors.py - Domain error taxonomy
from typing import Any, Dict


class FleetError(Exception):
    """Expected failure of a fleet operation.

    Each subclass maps to one HTTP status; ``extra`` is merged into the
    JSON error body so callers can see e.g. how many routes block a delete.
    """

    status_code = 500
    default_message = "Fleet operation failed"

    def __init__(self, message: str = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class InvalidCredentials(FleetError):
    status_code = 401
    default_message = "Invalid credentials"


class InvalidToken(FleetError):
    status_code = 401
    default_message = "Invalid token"


class Forbidden(FleetError):
    status_code = 403
    default_message = "Access forbidden: insufficient permissions"


class NotFound(FleetError):
    status_code = 404
    default_message = "Not found"


class DriverProfileMissing(FleetError):
    status_code = 404
    default_message = "Driver profile not found"


class DuplicateKey(FleetError):
    status_code = 409
    default_message = "Duplicate key"


class MissingEmail(FleetError):
    status_code = 400
    default_message = "Driver must have an email address"


class AccountExists(FleetError):
    status_code = 400
    default_message = "Account already exists for this driver"


class HasActiveWork(FleetError):
    status_code = 400
    default_message = "Cannot delete while active work remains"


class ValidationError(FleetError):
    status_code = 422
    default_message = "Invalid input"
