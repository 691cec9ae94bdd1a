"""
Custom exception hierarchy for Relay.

All exceptions inherit from RelayError and include:
- code: ErrorCode for categorization
- message: Human-readable error message
- details: Optional additional context
- recoverable: Whether the user can retry/fix the issue
- status_code: HTTP status the error surfaces as
- context: Additional key-value pairs for debugging
"""

from typing import Any, Optional
from .codes import ErrorCode


class RelayError(Exception):
    """Base exception for all Relay errors.

    Attributes:
        code: The ErrorCode categorizing this error
        message: Human-readable error message
        details: Optional additional context for the user
        recoverable: Whether the error can be resolved by user action
        status_code: HTTP status code used when surfaced to a caller
        context: Additional debugging information
    """

    code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED
    recoverable: bool = False
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        recoverable: Optional[bool] = None,
        **context: Any,
    ):
        self.message = message
        self.details = details
        self.context = context if context else None

        # Allow overriding class defaults
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable

        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> dict:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
        }


class ValidationError(RelayError):
    """Error during input validation (empty turn, unsupported MIME type)."""

    code = ErrorCode.VALIDATION_MISSING_PARAM
    recoverable = True
    status_code = 400

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        parameter: Optional[str] = None,
        expected: Optional[str] = None,
        received: Optional[str] = None,
        **context: Any,
    ):
        ctx = {**context}
        if parameter:
            ctx["parameter"] = parameter
        if expected:
            ctx["expected"] = expected
        if received:
            ctx["received"] = received
        super().__init__(message, details, **ctx)


class NotFoundError(RelayError):
    """Error when a conversation, attachment or message does not exist."""

    code = ErrorCode.NOT_FOUND_RESOURCE
    recoverable = True
    status_code = 404

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **context: Any,
    ):
        # Set appropriate code based on resource type
        if resource_type == "conversation":
            code = ErrorCode.NOT_FOUND_CONVERSATION
        elif resource_type == "attachment":
            code = ErrorCode.NOT_FOUND_ATTACHMENT
        elif resource_type == "message":
            code = ErrorCode.NOT_FOUND_MESSAGE
        else:
            code = ErrorCode.NOT_FOUND_RESOURCE

        ctx = {**context}
        if resource_type:
            ctx["resource_type"] = resource_type
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message, details, code=code, **ctx)


class ForbiddenError(RelayError):
    """Error when the caller does not own the target resource."""

    code = ErrorCode.FORBIDDEN_NOT_OWNER
    recoverable = False
    status_code = 403

    def __init__(
        self,
        message: str = "You do not have access to this resource",
        details: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **context: Any,
    ):
        ctx = {**context}
        if resource_type:
            ctx["resource_type"] = resource_type
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message, details, **ctx)


class ParseError(RelayError):
    """Error during document text extraction (PDF, Word)."""

    code = ErrorCode.PARSE_FORMAT_UNKNOWN
    recoverable = True

    def __init__(self, message: str, details: Optional[str] = None, file_type: Optional[str] = None, **context: Any):
        if file_type == "pdf":
            code = ErrorCode.PARSE_PDF_FAILED
        elif file_type == "document":
            code = ErrorCode.PARSE_WORD_FAILED
        elif file_type == "image":
            code = ErrorCode.PARSE_IMAGE_FAILED
        else:
            code = ErrorCode.PARSE_FORMAT_UNKNOWN

        super().__init__(message, details, code=code, **context)


class LLMError(RelayError):
    """Error during LLM interactions."""

    code = ErrorCode.LLM_UNAVAILABLE
    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        model: Optional[str] = None,
        error_type: Optional[str] = None,
        **context: Any,
    ):
        if error_type == "timeout":
            code = ErrorCode.LLM_TIMEOUT
        elif error_type == "invalid":
            code = ErrorCode.LLM_RESPONSE_INVALID
        elif error_type == "stream":
            code = ErrorCode.LLM_STREAM_FAILED
        else:
            code = ErrorCode.LLM_UNAVAILABLE

        ctx = {**context}
        if model:
            ctx["model"] = model
        super().__init__(message, details, code=code, **ctx)


class ExternalServiceError(RelayError):
    """Error with external services (SearXNG, object storage, etc.)."""

    code = ErrorCode.EXTERNAL_NETWORK_ERROR
    recoverable = True

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        code = ErrorCode.EXTERNAL_SEARXNG_FAILED if service == "searxng" else ErrorCode.EXTERNAL_NETWORK_ERROR

        ctx = {**context}
        if service:
            ctx["service"] = service
        if status_code:
            ctx["upstream_status"] = status_code
        super().__init__(message, details, code=code, **ctx)


class StorageError(RelayError):
    """Error reading/writing file storage or persisting chat state."""

    code = ErrorCode.STORAGE_WRITE_FAILED
    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        operation: Optional[str] = None,
        locator: Optional[str] = None,
        **context: Any,
    ):
        if operation == "read":
            code = ErrorCode.STORAGE_READ_FAILED
        elif operation == "persist":
            code = ErrorCode.STORAGE_PERSIST_FAILED
        else:
            code = ErrorCode.STORAGE_WRITE_FAILED

        ctx = {**context}
        if operation:
            ctx["operation"] = operation
        if locator:
            ctx["locator"] = locator
        super().__init__(message, details, code=code, **ctx)


# Error families surfaced as "upstream failure" (HTTP 500)
UPSTREAM_ERRORS = (LLMError, ExternalServiceError, StorageError)
