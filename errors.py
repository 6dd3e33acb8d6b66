from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """
    Central registry of data-access error codes.
    Each code maps to a stable identifier and a default message.
    """
    # Provider rules (1xxx)
    AUTH_PROVIDER_INVALID = ("USR_1001", "Unknown authentication provider.")
    PASSWORD_REQUIRED = ("USR_1002", "Local accounts require a password.")
    PASSWORD_NOT_ALLOWED = ("USR_1003", "Federated accounts cannot carry a password.")
    PROVIDER_ID_REQUIRED = ("USR_1004", "Federated accounts require an external provider id.")
    PROVIDER_ID_NOT_ALLOWED = ("USR_1005", "Local accounts cannot carry an external provider id.")
    USER_NOT_FOUND = ("USR_1006", "The requested user was not found.")
    PASSWORD_TOO_LONG = ("USR_1007", "Passwords cannot be longer than 72 bytes.")

    # Password resets (2xxx)
    RESET_TOKEN_INVALID = ("RST_2001", "The password reset token is invalid.")
    RESET_TOKEN_EXPIRED = ("RST_2002", "The password reset token has expired.")

    # Personal access tokens (3xxx)
    TOKENABLE_TYPE_UNKNOWN = ("PAT_3001", "No table is registered for this tokenable type.")
    ABILITIES_TOO_LONG = ("PAT_3002", "The encoded abilities exceed the column length.")

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message


class AuthDataError(Exception):
    """Raised by the data-access layer when a write or lookup breaks a rule."""

    def __init__(self, error_code: ErrorCode, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.error_code = error_code
        self.message = message or error_code.message
        self.details = details
        super().__init__(f"[{error_code.code}] {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code.code,
            "message": self.message,
            "details": self.details,
        }


def raise_auth_error(error_code: ErrorCode, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
    """
    Raise a structured AuthDataError using the centralized registry.
    """
    raise AuthDataError(error_code, message=message, details=details)
