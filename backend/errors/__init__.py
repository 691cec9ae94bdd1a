"""
Relay Error Handling Module

Provides standardized error codes, exceptions, and response builders
for consistent error handling across the application.

Usage:
    from errors import (
        # Error codes
        ErrorCode,

        # Exceptions
        RelayError,
        ValidationError,
        NotFoundError,
        ForbiddenError,
        ParseError,
        LLMError,
        ExternalServiceError,
        StorageError,

        # Response builders
        error_response,
        format_error_for_llm,

        # Decorators / handlers
        handle_async_tool_errors,
        log_error,
        register_exception_handlers,
    )

Example:
    from errors import NotFoundError, ForbiddenError

    async def verify_ownership(store, conversation_id, user_id):
        conversation = await store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(
                "Conversation not found",
                resource_type="conversation",
                resource_id=conversation_id,
            )
        if conversation.user_id != user_id:
            raise ForbiddenError(resource_type="conversation", resource_id=conversation_id)
        return conversation
"""

from .codes import ErrorCode
from .exceptions import (
    RelayError,
    ValidationError,
    NotFoundError,
    ForbiddenError,
    ParseError,
    LLMError,
    ExternalServiceError,
    StorageError,
    UPSTREAM_ERRORS,
)
from .response import (
    error_response,
    format_error_for_llm,
)
from .handlers import (
    handle_async_tool_errors,
    log_error,
    register_exception_handlers,
)

__all__ = [
    # Error codes
    "ErrorCode",
    # Exceptions
    "RelayError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
    "ParseError",
    "LLMError",
    "ExternalServiceError",
    "StorageError",
    "UPSTREAM_ERRORS",
    # Response builders
    "error_response",
    "format_error_for_llm",
    # Decorators / handlers
    "handle_async_tool_errors",
    "log_error",
    "register_exception_handlers",
]
