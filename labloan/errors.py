"""
Error taxonomy for the loan-management core.

Services raise these; the API layer maps each class to one HTTP status
through a single exception handler registered in ``main.create_app``.

- ValidationError: malformed or out-of-range input (field-level message)
- Unauthorized: well-formed request from an actor lacking permission
- NotFound: entity missing or outside the actor's visibility
- StateConflict: transition not valid for the current status
- InsufficientInventory: reservation would break 0 <= available <= total
"""

from typing import Optional, Any, Dict


class LabLoanError(Exception):
    """Base exception for all domain errors"""

    status_code = 400

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(LabLoanError):
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(message, code="VALIDATION_ERROR", details={"field": field})
        self.field = field


class Unauthorized(LabLoanError):
    status_code = 403

    def __init__(self, message: str = "You are not allowed to perform this action."):
        super().__init__(message, code="UNAUTHORIZED")


class NotFound(LabLoanError):
    status_code = 404

    def __init__(self, resource_type: str):
        super().__init__(f"{resource_type} not found", code="NOT_FOUND", details={"resource_type": resource_type})


class StateConflict(LabLoanError):
    status_code = 409

    def __init__(self, message: str, current: Optional[str] = None, requested: Optional[str] = None):
        details = {}
        if current is not None:
            details["current"] = current
        if requested is not None:
            details["requested"] = requested
        super().__init__(message, code="STATE_CONFLICT", details=details)


class InsufficientInventory(LabLoanError):
    status_code = 422

    def __init__(self, available: int, requested: int):
        super().__init__(
            "Requested quantity exceeds available quantity.",
            code="INSUFFICIENT_INVENTORY",
            details={"available": available, "requested": requested},
        )
        self.available = available
        self.requested = requested


# ============================================
# Authentication
# ============================================

class AuthenticationFailed(LabLoanError):
    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message, code="AUTH_FAILED")


class LoginRefused(LabLoanError):
    """Credentials were correct but the account may not sign in."""

    status_code = 403

    def __init__(self, message: str, code: str):
        super().__init__(message, code=code)


class PasswordChangeRequired(LabLoanError):
    status_code = 403

    def __init__(self):
        super().__init__(
            "You must change your temporary password before continuing.",
            code="PASSWORD_CHANGE_REQUIRED",
        )
