"""
Error taxonomy shared by services and API routes.
Each error carries the HTTP status the API layer responds with and a
stable machine-readable code.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Standardized error codes."""
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"
    AUTHENTICATION_ERROR = "authentication_error"
    AUTHORIZATION_ERROR = "authorization_error"
    ALREADY_EXISTS_ERROR = "already_exists_error"
    STORAGE_ERROR = "storage_error"
    UPSTREAM_ERROR = "upstream_error"
    CONFIGURATION_ERROR = "configuration_error"
    UNKNOWN_ERROR = "unknown_error"


class EmmieError(Exception):
    """Base exception for application errors."""

    status_code: int = 500
    error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """JSON error envelope."""
        payload: Dict[str, Any] = {
            "error": self.message,
            "code": self.error_code.value,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(EmmieError):
    """Missing or malformed input, rejected before any storage I/O."""

    status_code = 400
    error_code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.field = field
        if field:
            self.details.setdefault("field", field)


class AuthenticationError(EmmieError):
    status_code = 401
    error_code = ErrorCode.AUTHENTICATION_ERROR


class NotFoundError(EmmieError):
    status_code = 404
    error_code = ErrorCode.NOT_FOUND_ERROR


class PermissionDeniedError(EmmieError):
    status_code = 403
    error_code = ErrorCode.AUTHORIZATION_ERROR


class ConflictError(EmmieError):
    status_code = 409
    error_code = ErrorCode.ALREADY_EXISTS_ERROR


class StorageError(EmmieError):
    """Insert, update or delete failure against the persistence layer."""

    status_code = 500
    error_code = ErrorCode.STORAGE_ERROR
    prefix = "Storage operation failed"

    def __init__(self, cause: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{self.prefix}: {cause}", details)
        self.cause = cause


class ChatCreationError(StorageError):
    prefix = "Chat creation failed"


class MessageSaveError(StorageError):
    """Message persistence failure; the prefix names the failing save."""

    def __init__(self, cause: Any, role: str = "user", details: Optional[Dict[str, Any]] = None):
        self.prefix = "Assistant message save failed" if role == "assistant" else "User message save failed"
        super().__init__(cause, details)
        self.role = role


class UpstreamProviderError(EmmieError):
    """LLM, assistant or image provider failure."""

    status_code = 502
    error_code = ErrorCode.UPSTREAM_ERROR


class ConfigurationError(EmmieError):
    """Agent configuration that cannot be routed, surfaced at admin-save time."""

    status_code = 400
    error_code = ErrorCode.CONFIGURATION_ERROR


__all__ = [
    'ErrorCode',
    'EmmieError',
    'ValidationError',
    'AuthenticationError',
    'NotFoundError',
    'PermissionDeniedError',
    'ConflictError',
    'StorageError',
    'ChatCreationError',
    'MessageSaveError',
    'UpstreamProviderError',
    'ConfigurationError',
]
