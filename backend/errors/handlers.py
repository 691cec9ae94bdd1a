"""
Error handling decorators and utilities for Relay.

Provides the tool-error decorator used by model-callable tools, a consistent
error logger, and the FastAPI exception handlers that turn RelayError into
HTTP responses.
"""

import logging
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .exceptions import RelayError
from .response import error_response

# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)


def handle_async_tool_errors(tool_name: str, logger: Optional[logging.Logger] = None):
    """Decorator that catches exceptions in async tools and returns standard error responses.

    A tool failing must not abort the model's generation; the error dict is
    handed back to the model as the tool result instead.

    Args:
        tool_name: Name of the tool for error response context
        logger: Optional logger instance (defaults to tool-specific logger)

    Returns:
        Decorated async function that returns error_response on exception

    Example:
        >>> @handle_async_tool_errors("web_search")
        ... async def web_search(query):
        ...     if not query:
        ...         raise ValidationError("Empty query", parameter="query")
        ...     return {"success": True, "results": results}
    """

    def decorator(func: F) -> F:
        log = logger or logging.getLogger(f"relay.{tool_name}")

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> dict:
            try:
                return await func(*args, **kwargs)
            except RelayError as e:
                log.error(f"[{tool_name}] {e.code.value}: {e.message}", exc_info=True)
                return error_response(e, tool=tool_name)
            except Exception as e:
                log.error(f"[{tool_name}] Unexpected error: {e}", exc_info=True)
                return error_response(e, tool=tool_name)

        return wrapper  # type: ignore

    return decorator


def log_error(
    logger: logging.Logger, error: Exception, context: Optional[str] = None, include_traceback: bool = True
) -> None:
    """Log an error with consistent formatting.

    Args:
        logger: Logger instance to use
        error: The exception to log
        context: Optional context string to prefix the message
        include_traceback: Whether to include the full stack trace

    Example:
        >>> log_error(logger, err, context="Persist")
        # Logs: "[Persist] STORAGE_PERSIST_FAILED: Could not save assistant message"
    """
    if isinstance(error, RelayError):
        message = f"{error.code.value}: {error.message}"
    else:
        message = str(error)

    if context:
        message = f"[{context}] {message}"

    logger.error(message, exc_info=include_traceback)


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Render a RelayError as its HTTP status with the standard error body."""
    if exc.status_code >= 500:
        cause = exc.__cause__
        logger.error(f"{exc.code.value} on {request.url.path}: {exc.message} (cause: {cause!r})")
        # Upstream causes stay in the logs, not in the response
        return JSONResponse(status_code=exc.status_code, content=error_response(exc, include_context=False))
    return JSONResponse(status_code=exc.status_code, content=error_response(exc))


def register_exception_handlers(app: FastAPI) -> None:
    """Attach Relay's exception handlers to a FastAPI app."""
    app.add_exception_handler(RelayError, relay_error_handler)
