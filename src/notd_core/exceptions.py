"""Custom exceptions for the notd core.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Subclasses of ``NotdError`` are
business-rule failures: the batch engine turns them into per-operation
error results. Anything else raised during a batch is treated as fatal.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_HAS_CHILDREN = 1002
    NOTE_INVALID_PARENT = 1003

    # Page errors (11xx)
    PAGE_NOT_FOUND = 1101

    # Property errors (2xxx)
    PROPERTY_NOT_FOUND = 2001

    # Batch errors (3xxx)
    TEMP_ID_UNRESOLVED = 3001
    BATCH_VALIDATION_FAILED = 3501
    BATCH_EXECUTION_FAILED = 3502

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_OWNER_TYPE = 7002


class NotdError(Exception):
    """Base exception for all notd errors.

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


class NoteNotFoundError(NotdError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"Note {note_id} not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class PageNotFoundError(NotdError):
    """Raised when a page cannot be found."""

    def __init__(self, page_ref: Any, message: Optional[str] = None):
        super().__init__(
            message or f"Page {page_ref} not found",
            code=ErrorCode.PAGE_NOT_FOUND,
            details={"page": page_ref}
        )
        self.page_ref = page_ref


class NoteHasChildrenError(NotdError):
    """Raised when deleting a note that still has child notes."""

    def __init__(self, note_id: int, child_count: int):
        super().__init__(
            f"Cannot delete note {note_id} because it has child notes",
            code=ErrorCode.NOTE_HAS_CHILDREN,
            details={"note_id": note_id, "child_count": child_count}
        )
        self.note_id = note_id
        self.child_count = child_count


class InvalidParentError(NotdError):
    """Raised when a parent reference would corrupt the note tree."""

    def __init__(self, message: str, note_id: Optional[int] = None,
                 parent_note_id: Optional[int] = None):
        details = {}
        if note_id is not None:
            details["note_id"] = note_id
        if parent_note_id is not None:
            details["parent_note_id"] = parent_note_id
        super().__init__(message, code=ErrorCode.NOTE_INVALID_PARENT, details=details)
        self.note_id = note_id
        self.parent_note_id = parent_note_id


class UnresolvedTempIdError(NotdError):
    """Raised when a temporary id has no mapping in the current batch."""

    def __init__(self, temp_id: str):
        super().__init__(
            f"Temporary id '{temp_id}' does not refer to a note created earlier in this batch",
            code=ErrorCode.TEMP_ID_UNRESOLVED,
            details={"temp_id": temp_id}
        )
        self.temp_id = temp_id


class PropertyNotFoundError(NotdError):
    """Raised when an owner carries no property with the requested name."""

    def __init__(self, owner_type: str, owner_id: int, name: str):
        super().__init__(
            f"Property '{name}' not found on {owner_type} {owner_id}",
            code=ErrorCode.PROPERTY_NOT_FOUND,
            details={"owner_type": owner_type, "owner_id": owner_id, "name": name}
        )
        self.owner_type = owner_type
        self.owner_id = owner_id
        self.name = name


class ValidationError(NotdError):
    """Raised for general validation errors."""

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


class StorageError(NotdError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
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


class BatchValidationError(NotdError):
    """Raised when a batch is structurally invalid.

    Nothing has been written when this is raised. ``violations`` lists every
    problem found, each as ``{"index": int | None, "message": str}``; an index
    of None refers to the batch as a whole.
    """

    def __init__(self, violations: List[Dict[str, Any]]):
        count = len(violations)
        super().__init__(
            f"Batch rejected: {count} invalid operation{'s' if count != 1 else ''}",
            code=ErrorCode.BATCH_VALIDATION_FAILED,
            details={"violation_count": count, "violations": violations[:10]}
        )
        # Full list; details is truncated for serialization
        self.violations: List[Dict[str, Any]] = list(violations)


class BatchExecutionError(NotdError):
    """Raised when a batch hits an unexpected failure and is rolled back.

    Attributes:
        operation_index: Input position of the operation that failed
        original_error: The underlying exception
    """

    def __init__(
        self,
        operation_index: int,
        original_error: Optional[Exception] = None,
        operation_type: Optional[str] = None
    ):
        details: Dict[str, Any] = {"operation_index": operation_index}
        if operation_type:
            details["operation_type"] = operation_type
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(
            f"Batch rolled back: operation {operation_index} failed unexpectedly",
            code=ErrorCode.BATCH_EXECUTION_FAILED,
            details=details
        )
        self.operation_index = operation_index
        self.operation_type = operation_type
        self.original_error = original_error
