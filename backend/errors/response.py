"""
Standard error response builders for Relay.

Provides consistent response formats for HTTP error bodies, WebSocket
error events and tool results handed back to the model.
"""

from typing import Optional
from .codes import ErrorCode
from .exceptions import RelayError


def error_response(error: RelayError | Exception, tool: Optional[str] = None, include_context: bool = True) -> dict:
    """Build a standard error response dictionary.

    Args:
        error: The exception to convert to a response
        tool: Optional tool name for context
        include_context: Whether to include the context dict (disable for privacy)

    Returns:
        Standard error response dict with success=False

    Example:
        >>> from errors import NotFoundError, error_response
        >>> err = NotFoundError("Conversation not found", resource_type="conversation")
        >>> error_response(err)
        {
            "success": False,
            "error": {
                "code": "NOT_FOUND_CONVERSATION",
                "message": "Conversation not found",
                "details": None,
                "tool": None,
                "recoverable": True,
                "context": {"resource_type": "conversation"}
            }
        }
    """
    if isinstance(error, RelayError):
        return {
            "success": False,
            "error": {
                "code": error.code.value,
                "message": error.message,
                "details": error.details,
                "tool": tool,
                "recoverable": error.recoverable,
                "context": error.context if include_context else None,
            },
        }

    # Fallback for non-Relay exceptions
    return {
        "success": False,
        "error": {
            "code": ErrorCode.INTERNAL_UNEXPECTED.value,
            "message": str(error),
            "details": None,
            "tool": tool,
            "recoverable": False,
            "context": None,
        },
    }


def format_error_for_llm(error: RelayError | Exception, tool: Optional[str] = None) -> str:
    """Format an error for inclusion in LLM context.

    Creates a concise, readable error message suitable for the LLM to
    understand and communicate to the user.

    Args:
        error: The exception to format
        tool: Optional tool name for context

    Returns:
        Formatted error string
    """
    prefix = f"[{tool}] " if tool else ""
    if isinstance(error, RelayError):
        parts = [f"{prefix}Error: {error.message}"]
        if error.details:
            parts.append(f"Details: {error.details}")
        if error.recoverable:
            parts.append("This error may be recoverable by the user.")
        return " ".join(parts)

    return f"{prefix}Error: {str(error)}"
