"""Custom exceptions for the Bear notes core.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.

Version conflicts are deliberately absent here: they are returned as
``ConflictResult`` values that callers must branch on.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Record errors (1xxx)
    RECORD_NOT_FOUND = 1001
    RECORD_VALIDATION_FAILED = 1002

    # Store errors (4xxx)
    STORE_UNAVAILABLE = 4001
    STORE_READ_FAILED = 4002
    STORE_WRITE_FAILED = 4003

    # Search errors (5xxx)
    SEARCH_FAILED = 5001
    SEARCH_INVALID_QUERY = 5002
    SEARCH_CANCELLED = 5003

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class BearCoreError(Exception):
    """Base exception for all Bear notes core errors.

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
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class RecordNotFoundError(BearCoreError):
    """Raised when a record cannot be found in the store."""

    def __init__(self, record_id: int, message: Optional[str] = None):
        super().__init__(
            message or f"Record with ID {record_id} not found",
            code=ErrorCode.RECORD_NOT_FOUND,
            details={"record_id": record_id}
        )
        self.record_id = record_id


class InvalidQueryError(BearCoreError):
    """Raised for malformed queries, before any store access happens."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.SEARCH_INVALID_QUERY
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class SearchCancelledError(BearCoreError):
    """Raised when a caller abandons an in-flight search."""

    def __init__(self, scanned: int = 0):
        super().__init__(
            "Search was cancelled",
            code=ErrorCode.SEARCH_CANCELLED,
            details={"scanned": scanned}
        )
        self.scanned = scanned


class StoreUnavailableError(BearCoreError):
    """Raised when the backing store cannot serve a request.

    Never retried by the core; retry policy belongs to the caller.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORE_UNAVAILABLE,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error
