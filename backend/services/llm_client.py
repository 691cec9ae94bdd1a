"""
LLM Client - wraps the OpenAI SDK to talk to any OpenAI-compatible provider.

Internal messages use the parts representation (see utils.parts); the
provider wants flat ``{"role", "content"}`` dicts. ``to_provider_messages``
performs that conversion and, like most provider converters, it is lossy:
images and raw file parts are dropped. Callers that need images restore
them afterwards (routers.chat_orchestration.image_restore).

Stream events:
    {"type": "text", "content": "..."}       incremental answer text
    {"type": "tool", "part": {...}}          completed tool call as a tool part
    {"type": "finish", "usage": {...}|None}  end of stream
"""

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from errors import LLMError, error_response, format_error_for_llm
from logging_config import log_llm
from utils.parts import tool_part_text

logger = logging.getLogger(__name__)

# Retry settings for transient provider errors (before the first token only)
MODEL_RETRY_MAX = 2
MODEL_RETRY_DELAY = 3.0  # seconds


_PERMANENT_ERROR_PATTERNS = [
    "model not found",
    "does not exist",
    "invalid model",
    "invalid api key",
]

_TRANSIENT_ERROR_PATTERNS = [
    "model is loading",
    "connection refused",
    "connection reset",
    "temporarily unavailable",
    "rate limit",
    "overloaded",
]

ToolExecutor = Callable[[str, Dict[str, Any]], Awaitable[Any]]


def is_retryable_error(error: Exception) -> bool:
    """Check if error is transient and worth retrying (not permanent failures)."""
    error_str = str(error).lower()
    # Never retry permanent errors
    if any(p in error_str for p in _PERMANENT_ERROR_PATTERNS):
        return False
    if isinstance(error, (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)):
        return True
    # Retry known transient errors
    return any(p in error_str for p in _TRANSIENT_ERROR_PATTERNS)


# =============================================================================
# Message Translation
# =============================================================================


def _message_text(message: Dict[str, Any]) -> str:
    parts = message.get("parts")
    if not isinstance(parts, list):
        content = message.get("content")
        return content if isinstance(content, str) else ""

    chunks = []
    for part in parts:
        part_type = part.get("type", "")
        if part_type in ("text", "file") and isinstance(part.get("text"), str):
            chunks.append(part["text"])
        elif part_type.startswith("tool-"):
            chunks.append(tool_part_text(part))
    return "".join(chunks)


def to_provider_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Translate internal messages to the provider's flat format.

    - text parts, inlined file text and rendered tool results join into ``content``
    - image parts and raw file data are dropped
    - system messages come first
    - assistant and system messages left with no text are skipped; user
      messages are always kept (empty content when they carry no text) so the
      n-th user entry out is the n-th user message in
    """
    system: List[Dict[str, Any]] = []
    rest: List[Dict[str, Any]] = []

    for message in messages:
        role = message.get("role", "user")
        text = _message_text(message)
        if not text.strip() and role != "user":
            continue
        (system if role == "system" else rest).append({"role": role, "content": text})

    return system + rest


def _tool_call_dicts(pending: Dict[int, Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "id": call["id"],
            "type": "function",
            "function": {"name": call["name"], "arguments": call["arguments"] or "{}"},
        }
        for _, call in sorted(pending.items())
    ]


def _parse_arguments(raw: str) -> Dict[str, Any]:
    try:
        args = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool call arguments: {raw}")
        return {}
    return args if isinstance(args, dict) else {}


# =============================================================================
# Client
# =============================================================================


class LLMClient:
    """Async OpenAI SDK client pointed at the configured provider."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 120.0):
        """
        Args:
            base_url: Provider URL without the /v1 suffix (e.g. "https://api.groq.com/openai")
            api_key: Provider API key
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._openai = AsyncOpenAI(
            base_url=f"{self.base_url}/v1",
            api_key=api_key or "not-needed",
            timeout=timeout,
        )

    async def close(self) -> None:
        await self._openai.close()

    async def generate_completion(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        """Non-streaming completion (titles, classification, intent analysis).

        Accepts provider-format messages or internal parts messages.

        Raises:
            LLMError: Provider failure after retries
        """
        if any("parts" in m for m in messages):
            provider_messages = to_provider_messages(messages)
        else:
            provider_messages = messages

        last_error: Optional[Exception] = None
        for attempt in range(MODEL_RETRY_MAX + 1):
            if attempt > 0:
                delay = MODEL_RETRY_DELAY * (2 ** (attempt - 1))
                logger.info(f"Retry {attempt}/{MODEL_RETRY_MAX} for {model} after {delay:.1f}s")
                await asyncio.sleep(delay)

            start_time = time.time()
            log_llm(logger, "start", model=model)
            try:
                response = await self._openai.chat.completions.create(
                    model=model,
                    messages=provider_messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
            except openai.APITimeoutError as e:
                raise LLMError(
                    f"Model response timed out after {self._timeout}s",
                    model=model,
                    error_type="timeout",
                ) from e
            except openai.APIError as e:
                last_error = e
                if is_retryable_error(e) and attempt < MODEL_RETRY_MAX:
                    logger.warning(f"Retryable error on {model}: {e}")
                    continue
                raise LLMError("Model call failed", details=str(e), model=model) from e

            log_llm(logger, "end", model=model, duration=time.time() - start_time)
            if not response.choices:
                raise LLMError("Model returned no choices", model=model, error_type="invalid")
            return response.choices[0].message.content or ""

        raise LLMError("Model call failed", details=str(last_error), model=model)

    async def _open_stream(self, **kwargs: Any):
        """Open a streaming request, retrying transient errors (no tokens sent yet)."""
        model = kwargs.get("model", "unknown")
        for attempt in range(MODEL_RETRY_MAX + 1):
            if attempt > 0:
                delay = MODEL_RETRY_DELAY * (2 ** (attempt - 1))
                logger.info(f"Retry {attempt}/{MODEL_RETRY_MAX} for streaming {model} after {delay:.1f}s")
                await asyncio.sleep(delay)
            try:
                return await self._openai.chat.completions.create(stream=True, **kwargs)
            except openai.APITimeoutError as e:
                raise LLMError(
                    f"Model response timed out after {self._timeout}s",
                    model=model,
                    error_type="timeout",
                ) from e
            except openai.APIError as e:
                if is_retryable_error(e) and attempt < MODEL_RETRY_MAX:
                    logger.warning(f"Retryable error on {model}: {e}")
                    continue
                raise LLMError("Model call failed", details=str(e), model=model) from e

    async def stream_completion(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_executor: Optional[ToolExecutor] = None,
        max_steps: int = 5,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Stream a completion, running tool calls for up to ``max_steps`` steps.

        Args:
            messages: Provider-format messages (content may be a multimodal list)
            model: Model name
            temperature: Sampling temperature
            max_tokens: Output token limit per step
            tools: OpenAI tool definitions, or None for a plain completion
            tool_executor: ``await tool_executor(name, args)`` returning the tool output
            max_steps: Maximum model round-trips when tools are in play

        Yields:
            Stream event dicts (see module docstring)

        Raises:
            LLMError: Provider failure (before or during the stream)
        """
        conversation = list(messages)
        steps = max(1, max_steps) if tools and tool_executor else 1
        total_tokens = 0
        start_time = time.time()
        log_llm(logger, "start", model=model)

        for step in range(steps):
            kwargs: Dict[str, Any] = {
                "model": model,
                "messages": conversation,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "stream_options": {"include_usage": True},
            }
            # Last step gets no tools so the model has to answer
            if tools and tool_executor and step < steps - 1:
                kwargs["tools"] = tools

            stream = await self._open_stream(**kwargs)
            step_text = ""
            pending: Dict[int, Dict[str, Any]] = {}

            try:
                async for chunk in stream:
                    usage = getattr(chunk, "usage", None)
                    if usage is not None and getattr(usage, "total_tokens", None):
                        total_tokens += usage.total_tokens
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    if delta is None:
                        continue
                    if delta.content:
                        step_text += delta.content
                        yield {"type": "text", "content": delta.content}
                    for tc in delta.tool_calls or []:
                        call = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                        if tc.id:
                            call["id"] = tc.id
                        if tc.function is not None:
                            call["name"] += tc.function.name or ""
                            call["arguments"] += tc.function.arguments or ""
            except openai.APIError as e:
                raise LLMError("Model stream failed", details=str(e), model=model, error_type="stream") from e

            if not pending:
                break

            conversation.append({
                "role": "assistant",
                "content": step_text or None,
                "tool_calls": _tool_call_dicts(pending),
            })
            for _, call in sorted(pending.items()):
                args = _parse_arguments(call["arguments"])
                logger.info(f"Tool call: {call['name']}({args})")
                try:
                    output = await tool_executor(call["name"], args)
                    tool_content = json.dumps(output, default=str)
                except Exception as e:
                    logger.error(f"Tool {call['name']} raised: {e}", exc_info=True)
                    output = error_response(e, tool=call["name"], include_context=False)
                    tool_content = format_error_for_llm(e, tool=call["name"])
                yield {
                    "type": "tool",
                    "part": {
                        "type": f"tool-{call['name']}",
                        "toolName": call["name"],
                        "toolCallId": call["id"],
                        "state": "output-available",
                        "input": args,
                        "output": output,
                    },
                }
                conversation.append({
                    "role": "tool",
                    "tool_call_id": call["id"],
                    "content": tool_content,
                })

        log_llm(logger, "end", model=model, duration=time.time() - start_time)
        yield {"type": "finish", "usage": {"totalTokens": total_tokens} if total_tokens else None}
