"""Error kinds raised and reported by apiflow."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Machine-readable error kinds."""

    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_PROTOCOL = "INVALID_PROTOCOL"
    UNRESOLVED_VARIABLE = "UNRESOLVED_VARIABLE"
    EMPTY_WORKFLOW = "EMPTY_WORKFLOW"
    WORKFLOW_NOT_FOUND = "WORKFLOW_NOT_FOUND"
    INVALID_WORKFLOW = "INVALID_WORKFLOW"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"


class ApiflowError(Exception):
    """Base exception for apiflow errors."""

    code: ErrorCode = ErrorCode.INVALID_REQUEST

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidRequestError(ApiflowError):
    """Raised when a request is missing fields required by its protocol."""

    code = ErrorCode.INVALID_REQUEST


class InvalidProtocolError(ApiflowError):
    """Raised when no handler is registered for a protocol tag."""

    code = ErrorCode.INVALID_PROTOCOL

    def __init__(self, protocol: Optional[str]):
        self.protocol = protocol
        super().__init__(f"Unsupported protocol: {protocol}")


class UnresolvedVariableError(ApiflowError):
    """Raised when a required field still holds a ``{{variable}}`` token."""

    code = ErrorCode.UNRESOLVED_VARIABLE

    def __init__(self, field: str, names: list[str]):
        self.field = field
        self.names = names
        joined = ", ".join(names)
        super().__init__(f"Unresolved variable(s) in {field}: {joined}")


class ExtractionError(ApiflowError):
    """Raised when a path expression yields nothing for a response body."""

    code = ErrorCode.EXTRACTION_FAILED

    def __init__(self, path: str, reason: str = "no match"):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not extract {path!r}: {reason}")


class EmptyWorkflowError(ApiflowError):
    """Raised when a workflow has no steps."""

    code = ErrorCode.EMPTY_WORKFLOW


class WorkflowNotFoundError(ApiflowError):
    """Raised when a workflow id is unknown to the repository."""

    code = ErrorCode.WORKFLOW_NOT_FOUND

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow with ID {workflow_id} not found")


class InvalidWorkflowError(ApiflowError):
    """Raised when a workflow definition is structurally malformed."""

    code = ErrorCode.INVALID_WORKFLOW
