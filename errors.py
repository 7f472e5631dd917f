"""Error types raised by the API and mapped to HTTP responses in main.py.

Every error carries a code, a category and the status it maps to. Handlers
raise these; nothing below the route layer builds HTTP responses itself.
"""
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    CONFLICT = "conflict"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    INTERNAL = "internal"


class CruwError(Exception):
    """Base class for all handled API errors."""

    def __init__(self, message: str, code: str, category: ErrorCategory, http_status: int = 500):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.http_status = http_status

    def to_response(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
            }
        }


# --- Client errors ---

class ValidationError(CruwError):
    """Missing or malformed input, detected before any storage call."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, "VALIDATION_ERROR", ErrorCategory.VALIDATION, 400)
        self.field = field


class AuthError(CruwError):
    pass


class InvalidCredentialsError(AuthError):
    # Same message for unknown e-mail and wrong password.
    def __init__(self):
        super().__init__("Invalid email or password.", "INVALID_CREDENTIALS", ErrorCategory.AUTH, 401)


class MissingTokenError(AuthError):
    def __init__(self):
        super().__init__("No token provided.", "MISSING_TOKEN", ErrorCategory.AUTH, 401)


class InvalidTokenError(AuthError):
    def __init__(self, reason: str = "Invalid or expired token."):
        super().__init__(reason, "INVALID_TOKEN", ErrorCategory.AUTH, 403)


class ConflictError(CruwError):
    def __init__(self, message: str):
        super().__init__(message, "CONFLICT", ErrorCategory.CONFLICT, 409)


class NotFoundError(CruwError):
    def __init__(self, resource_type: str, resource_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND, 404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


# --- Server errors ---

class StorageError(CruwError):
    """Unexpected database failure."""

    def __init__(self, message: str, operation: str):
        super().__init__(message, "STORAGE_ERROR", ErrorCategory.DATABASE, 500)
        self.operation = operation
