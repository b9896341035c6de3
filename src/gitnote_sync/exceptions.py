"""Custom exceptions for gitnote-sync.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Call sites performing existence
checks treat NotFoundError as "no data yet"; everything else from the
remote is a RemoteError and aborts the current pass.
"""
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from gitnote_sync.models.schema import ConflictSet


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Authentication errors (1xxx)
    AUTH_MISSING = 1001
    AUTH_INVALID = 1002

    # Remote store errors (2xxx)
    REMOTE_NOT_FOUND = 2001
    REMOTE_REQUEST_FAILED = 2002
    REMOTE_UNAVAILABLE = 2003

    # Merge errors (3xxx)
    CONFIG_CONFLICT = 3001

    # Parse errors (4xxx)
    PARSE_FAILED = 4001

    # Local store errors (5xxx)
    STORE_NOT_INITIALIZED = 5001
    STORE_WRITE_FAILED = 5002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class GitNoteError(Exception):
    """Base exception for all gitnote-sync errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
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
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class AuthError(GitNoteError):
    """Raised when the credential is missing or rejected by the remote."""

    def __init__(
        self,
        message: str = "Not logged in to GitHub",
        code: ErrorCode = ErrorCode.AUTH_MISSING,
        status_code: Optional[int] = None,
    ):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, code=code, details=details)
        self.status_code = status_code


class RemoteError(GitNoteError):
    """Raised for any failure of the remote store other than a missing resource."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.REMOTE_REQUEST_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if path:
            details["path"] = path
        if status_code is not None:
            details["status_code"] = status_code
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.path = path
        self.status_code = status_code
        self.original_error = original_error


class NotFoundError(RemoteError):
    """Raised when a remote resource is absent.

    Existence checks catch this and treat it as a valid empty state.
    """

    def __init__(self, path: str, message: Optional[str] = None):
        super().__init__(
            message or f"Remote path '{path}' not found",
            path=path,
            status_code=404,
            code=ErrorCode.REMOTE_NOT_FOUND,
        )


class ConflictError(GitNoteError):
    """Raised when the remote config snapshot conflicts with local metadata.

    Aborts the pull before the local store is touched. The caller must
    resolve every record before metadata sync can proceed again.
    """

    def __init__(self, conflicts: "ConflictSet", message: Optional[str] = None):
        super().__init__(
            message or f"{conflicts.count()} config conflict(s) need resolution",
            code=ErrorCode.CONFIG_CONFLICT,
            details={
                "notebooks": len(conflicts.notebooks),
                "folders": len(conflicts.folders),
                "tags": len(conflicts.tags),
                "settings": len(conflicts.settings),
            },
        )
        self.conflicts = conflicts


class ParseError(GitNoteError):
    """Raised when a remote document cannot be parsed."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=ErrorCode.PARSE_FAILED, details=details)
        self.path = path
        self.original_error = original_error


class StoreNotInitializedError(GitNoteError):
    """Raised when the local store is used before init or after close."""

    def __init__(self, message: str = "Local store not initialized"):
        super().__init__(message, code=ErrorCode.STORE_NOT_INITIALIZED)


class ValidationError(GitNoteError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
