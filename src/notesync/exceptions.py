"""Custom exceptions for the notesync client.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Every error is handled at the call
site that issued the operation; ``str(error)`` is always the message as
received, so provider and store messages reach the caller unmodified.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Validation errors (1xxx)
    VALIDATION_FAILED = 1001
    CONTENT_REQUIRED = 1002
    INVALID_EDIT_STATE = 1003

    # Remote store errors (2xxx)
    REMOTE_READ_FAILED = 2001
    REMOTE_WRITE_FAILED = 2002
    REMOTE_MALFORMED_RESPONSE = 2003
    REMOTE_UNAVAILABLE = 2004

    # Auth errors (3xxx)
    AUTH_FAILED = 3001
    AUTH_RESET_FAILED = 3002
    AUTH_REQUIRED = 3003

    # Session lifecycle errors (4xxx)
    STALE_SESSION = 4001

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002


class NoteSyncError(Exception):
    """Base exception for all notesync errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        return self.message


class ValidationError(NoteSyncError):
    """Raised when input is rejected locally, before any network call."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class InvalidEditStateError(ValidationError):
    """Raised when an edit operation is used outside an active edit."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message, code=ErrorCode.INVALID_EDIT_STATE)
        self.operation = operation
        if operation:
            self.details["operation"] = operation


class RemoteError(NoteSyncError):
    """Raised when the remote store fails a read or write.

    The message is the store's own message, passed through as is.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.REMOTE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if status_code is not None:
            details["status_code"] = status_code
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.status_code = status_code
        self.original_error = original_error


class AuthError(NoteSyncError):
    """Raised when the auth provider rejects credentials or a reset request."""

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.AUTH_FAILED
    ):
        details: Dict[str, Any] = {}
        if action:
            details["action"] = action
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(message, code=code, details=details)
        self.action = action
        self.status_code = status_code


class StaleSessionError(NoteSyncError):
    """Raised when an operation was abandoned because its session went away.

    Attributes:
        issued_generation: Session generation the operation was issued under
        current_generation: Session generation at the time it was abandoned
    """

    def __init__(
        self,
        message: str,
        issued_generation: Optional[int] = None,
        current_generation: Optional[int] = None,
    ):
        details: Dict[str, Any] = {}
        if issued_generation is not None:
            details["issued_generation"] = issued_generation
        if current_generation is not None:
            details["current_generation"] = current_generation

        super().__init__(message, code=ErrorCode.STALE_SESSION, details=details)
        self.issued_generation = issued_generation
        self.current_generation = current_generation


class ConfigurationError(NoteSyncError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
