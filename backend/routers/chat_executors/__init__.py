"""
Relay Chat Executors - Tool definitions and dispatch

Tools are offered to the model in OpenAI function-calling format and run
through execute_tool(), which never raises: unknown tools and executor
failures come back as error dicts the model can read.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List

from errors import ErrorCode, ValidationError, error_response

from .search import web_search

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = {
    "type": "function",
    "function": {
        "name": "web_search",
        "description": (
            "Search the web for current, real-time information such as news, recent events, "
            "prices or statistics. Returns a summary and a list of results with title, url and content."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query"},
            },
            "required": ["query"],
        },
    },
}

EXECUTORS: Dict[str, Callable[..., Awaitable[Dict[str, Any]]]] = {
    "web_search": web_search,
}


def get_tool_definitions() -> List[Dict[str, Any]]:
    """Tool definitions passed to the model."""
    return [WEB_SEARCH_TOOL]


async def execute_tool(name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """Run a tool by name with model-supplied arguments."""
    executor = EXECUTORS.get(name)
    if executor is None:
        logger.warning(f"Model requested unknown tool: {name}")
        return error_response(
            ValidationError(f"Unknown tool: {name}", code=ErrorCode.VALIDATION_INVALID_FORMAT, parameter="tool"),
            tool=name,
        )
    try:
        return await executor(**args)
    except TypeError as e:
        logger.warning(f"Bad arguments for {name}: {e}")
        return error_response(ValidationError(f"Invalid arguments for {name}", details=str(e)), tool=name)


__all__ = ["WEB_SEARCH_TOOL", "get_tool_definitions", "execute_tool", "web_search"]
