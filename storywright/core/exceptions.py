"""
Story workflow exceptions.

Every failure a workflow operation can report maps to exactly one class
below, and each class carries the HTTP status the router answers with:

- NotFoundError: PRD, story or template absent (404)
- InvalidRequestError: caller input rejected before any work is done (400)
- UpstreamFailureError: the completion service returned an error (502)
- MalformedUpstreamResponseError: the completion service answered with
  text that cannot be coerced into the expected shape (502)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    operation: str = ""
    prd_id: str = ""
    story_id: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and responses."""
        result = {}
        if self.operation:
            result["operation"] = self.operation
        if self.prd_id:
            result["prd_id"] = self.prd_id
        if self.story_id:
            result["story_id"] = self.story_id
        result.update(self.extra)
        return result


class StoryWorkflowError(Exception):
    """Base exception for all story workflow errors."""

    error_code: str = "STORY_WORKFLOW_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.context.operation:
            parts.append(f"[operation={self.context.operation}]")
        if self.cause:
            parts.append(f"[caused by: {type(self.cause).__name__}: {self.cause}]")
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and error responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context.to_dict(),
        }


class NotFoundError(StoryWorkflowError):
    """A PRD, story or template does not exist."""

    error_code = "NOT_FOUND"
    http_status = 404


class InvalidRequestError(StoryWorkflowError):
    """Caller-supplied input was rejected."""

    error_code = "INVALID_REQUEST"
    http_status = 400


class UpstreamFailureError(StoryWorkflowError):
    """The completion service reported a failure."""

    error_code = "UPSTREAM_FAILURE"
    http_status = 502

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        detail: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, context=context, cause=cause)
        self.status = status
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["upstream_status"] = self.status
        result["upstream_detail"] = self.detail
        return result


class MalformedUpstreamResponseError(StoryWorkflowError):
    """The completion service answered with an unusable payload."""

    error_code = "MALFORMED_UPSTREAM_RESPONSE"
    http_status = 502
