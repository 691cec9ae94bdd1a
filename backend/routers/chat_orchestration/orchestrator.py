"""
Relay Conversation Orchestrator - one chat turn from request to persisted answer.

prepare_turn (everything that can fail before the first token):
1. Ownership check
2. Normalize the incoming message; empty turns are rejected
3. Duplicate resend detection against the latest persisted user messages
4. Persist the user message and link its attachments
5. History (with attachment text) → mode resolution → provider messages
6. Intent analysis decides whether the web search tool is offered

stream_turn:
- one streaming call; text deltas are forwarded as they arrive
- on completion the assistant message is persisted with generation metadata
  (persistence is retried before surfacing as an upstream failure)
- on cancellation partial content is persisted, tagged ``partial``
- every stream ends with a terminal event (done or error)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from config import runtime_config
from errors import ErrorCode, RelayError, StorageError, ValidationError, error_response, log_error
from logging_config import log_message_in, log_message_out, log_mode
from routers.chat_executors import execute_tool, get_tool_definitions
from services.chat_store import ChatStore, Conversation, require_owned_conversation
from utils.parts import (
    attachment_ids,
    extract_text,
    extract_tool_calls,
    has_images,
    normalize_message,
    normalize_parts,
    text_part,
)

from .context import ContextAssembler
from .image_restore import has_image_content
from .intent import analyze_query_intent
from .modes import ModeConfig, ModeDecision, ModeResolver, compose_system_prompt, get_mode_config

logger = logging.getLogger(__name__)

PERSIST_RETRY_DELAY = 0.5  # seconds


@dataclass
class TurnPlan:
    """Everything decided before streaming starts."""

    conversation: Conversation
    decision: ModeDecision
    mode_config: ModeConfig
    model: str
    messages: List[Dict[str, Any]]
    tools: Optional[List[Dict[str, Any]]] = None
    duplicate: bool = False
    user_message_id: Optional[str] = None

    def metadata(self) -> Dict[str, Any]:
        return {
            "requestedMode": self.decision.requested,
            "effectiveMode": self.decision.effective,
            "modelUsed": self.model,
            "temperature": self.mode_config.temperature,
        }


@dataclass
class _Answer:
    """Assistant message being accumulated from stream events."""

    parts: List[Dict[str, Any]] = field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None

    @property
    def content(self) -> str:
        return "".join(p["text"] for p in self.parts if p.get("type") == "text")

    def add_text(self, text: str) -> None:
        if self.parts and self.parts[-1].get("type") == "text":
            self.parts[-1]["text"] += text
        else:
            self.parts.append(text_part(text))

    def add_tool(self, part: Dict[str, Any]) -> None:
        self.parts.append(part)

    @property
    def empty(self) -> bool:
        return not self.content and not extract_tool_calls(self.parts)


class ConversationOrchestrator:
    """Coordinates mode resolution, context assembly, streaming and persistence."""

    def __init__(
        self,
        store: ChatStore,
        assembler: ContextAssembler,
        resolver: ModeResolver,
        llm_client,
        tool_executor=execute_tool,
    ):
        self.store = store
        self.assembler = assembler
        self.resolver = resolver
        self.llm_client = llm_client
        self.tool_executor = tool_executor

    async def handle_turn(
        self,
        conversation_id: str,
        user_id: str,
        incoming_messages: List[Dict[str, Any]],
        mode_override: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Run a full turn, yielding stream events.

        Validation and ownership errors raise before the first event.
        """
        plan = await self.prepare_turn(conversation_id, user_id, incoming_messages, mode_override)
        stream = self.stream_turn(plan)
        try:
            async for event in stream:
                yield event
        finally:
            await stream.aclose()

    # --- Before the stream ----------------------------------------------------

    async def prepare_turn(
        self,
        conversation_id: str,
        user_id: str,
        incoming_messages: List[Dict[str, Any]],
        mode_override: Optional[str] = None,
    ) -> TurnPlan:
        """Persist the user turn and decide how to answer it.

        Raises:
            NotFoundError / ForbiddenError: Conversation missing or not owned
            ValidationError: Empty or malformed turn
        """
        conversation = await require_owned_conversation(self.store, conversation_id, user_id)

        if not incoming_messages:
            raise ValidationError(
                "No user message provided",
                code=ErrorCode.VALIDATION_EMPTY_TURN,
                parameter="messages",
            )
        message = normalize_message(incoming_messages[-1])
        if message["role"] != "user":
            raise ValidationError(
                "Last message must be a user message",
                code=ErrorCode.VALIDATION_INVALID_FORMAT,
                parameter="messages",
                received=message["role"],
            )
        text = extract_text(message)
        if not text.strip() and not attachment_ids(message["parts"]) and not has_images(message):
            raise ValidationError(
                "Message is empty",
                code=ErrorCode.VALIDATION_EMPTY_TURN,
                parameter="messages",
            )

        duplicate = await self.is_duplicate(conversation.id, message, text)
        log_message_in(logger, text or "[attachments]", conversation=conversation.id, duplicate=duplicate)

        user_message_id = None
        if not duplicate:
            saved = await self.store.add_message(conversation.id, "user", message["parts"], text)
            user_message_id = saved.id
            await self.store.link_attachments(saved.id, attachment_ids(message["parts"]))

        history = await self.assembler.load_history(conversation)

        decision = await self.resolver.resolve(history, mode_override, stored=conversation.operational_mode)
        log_mode(logger, decision.requested, decision.effective, conversation.id)

        mode_config = get_mode_config(decision.effective)
        system_prompt = compose_system_prompt(mode_config.system_prompt, conversation.system_prompt)
        messages = await self.assembler.finalize(history, system_prompt)

        model = mode_config.model
        if has_image_content(messages):
            model = runtime_config.vision_model
            logger.info(f"Images present, routing to vision model {model}")

        tools = None
        if runtime_config.web_search_enabled and await analyze_query_intent(self.llm_client, history):
            tools = get_tool_definitions()

        return TurnPlan(
            conversation=conversation,
            decision=decision,
            mode_config=mode_config,
            model=model,
            messages=messages,
            tools=tools,
            duplicate=duplicate,
            user_message_id=user_message_id,
        )

    async def is_duplicate(self, conversation_id: str, message: Dict[str, Any], text: str) -> bool:
        """Whether the message repeats one of the latest persisted user messages."""
        window = max(1, runtime_config.duplicate_window)
        recent = await self.store.latest_user_messages(conversation_id, limit=window)
        for stored in recent:
            stored_text = extract_text({"parts": normalize_parts(stored.parts, stored.content)})
            if text.strip():
                if stored_text == text:
                    return True
            elif normalize_parts(stored.parts, stored.content) == message["parts"]:
                return True
        return False

    # --- The stream -----------------------------------------------------------

    async def stream_turn(self, plan: TurnPlan) -> AsyncIterator[Dict[str, Any]]:
        """Stream the answer for a prepared turn and persist it."""
        conversation_id = plan.conversation.id
        answer = _Answer()
        start = time.time()

        yield {"type": "start", "mode": plan.decision.to_dict(), "modelUsed": plan.model}

        try:
            async for event in self.llm_client.stream_completion(
                plan.messages,
                model=plan.model,
                temperature=plan.mode_config.temperature,
                max_tokens=plan.mode_config.max_tokens,
                tools=plan.tools,
                tool_executor=self.tool_executor if plan.tools else None,
                max_steps=runtime_config.max_tool_iterations,
            ):
                if event["type"] == "text":
                    answer.add_text(event["content"])
                    yield {"type": "stream", "content": event["content"], "done": False}
                elif event["type"] == "tool":
                    answer.add_tool(event["part"])
                elif event["type"] == "finish":
                    answer.usage = event.get("usage")
        except (asyncio.CancelledError, GeneratorExit):
            await self._persist_partial(conversation_id, plan, answer)
            raise
        except Exception as e:
            log_error(logger, e, context=f"Stream {conversation_id}")
            yield {"type": "error", "error": error_response(_as_relay_error(e), include_context=False)["error"]}
            return

        metadata = self._build_metadata(plan, answer)
        if answer.empty:
            logger.warning(f"Model returned an empty answer for {conversation_id}, nothing persisted")
        else:
            try:
                await self.persist_assistant(conversation_id, answer.parts, answer.content, metadata)
            except StorageError as e:
                yield {"type": "error", "error": error_response(e, include_context=False)["error"]}
                return

        log_message_out(logger, chars=len(answer.content), tool_calls=len(metadata.get("toolCalls") or []))
        logger.debug(f"Turn for {conversation_id} finished in {time.time() - start:.1f}s")
        yield {"type": "stream", "done": True, "metadata": metadata}

    def _build_metadata(self, plan: TurnPlan, answer: _Answer, partial: bool = False) -> Dict[str, Any]:
        metadata = plan.metadata()
        if answer.usage and answer.usage.get("totalTokens"):
            metadata["tokensUsed"] = answer.usage["totalTokens"]
        tool_calls = extract_tool_calls(answer.parts)
        if tool_calls:
            metadata["toolCalls"] = tool_calls
        if partial:
            metadata["partial"] = True
        return metadata

    async def _persist_partial(self, conversation_id: str, plan: TurnPlan, answer: _Answer) -> None:
        if not answer.content:
            logger.info(f"Turn for {conversation_id} cancelled before any content, nothing persisted")
            return
        metadata = self._build_metadata(plan, answer, partial=True)
        try:
            await self.persist_assistant(conversation_id, answer.parts, answer.content, metadata)
            log_message_out(logger, chars=len(answer.content), partial=True)
        except StorageError as e:
            log_error(logger, e, context="Partial persist")

    async def persist_assistant(
        self,
        conversation_id: str,
        parts: List[Dict[str, Any]],
        content: str,
        metadata: Dict[str, Any],
    ) -> None:
        """Save the assistant message and bump the conversation, with retries.

        Raises:
            StorageError: Still failing after the configured retries
        """
        attempts = 1 + max(1, runtime_config.message_persist_retries)
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            if attempt > 0:
                await asyncio.sleep(PERSIST_RETRY_DELAY * attempt)
                logger.info(f"Retry {attempt}/{attempts - 1} persisting assistant message for {conversation_id}")
            try:
                await self.store.add_message(conversation_id, "assistant", parts, content, metadata)
                break
            except Exception as e:
                last_error = e
                logger.warning(f"Failed to persist assistant message for {conversation_id}: {e}")
        else:
            error = StorageError(
                "Could not save assistant message",
                details=str(last_error),
                operation="persist",
                locator=conversation_id,
            )
            log_error(logger, error, context="Persist")
            raise error from last_error

        try:
            await self.store.touch_conversation(conversation_id)
        except Exception as e:
            logger.warning(f"Failed to bump updated_at for {conversation_id}: {e}")


def _as_relay_error(error: Exception) -> RelayError:
    if isinstance(error, RelayError):
        return error
    return RelayError("Chat streaming failed", details=str(error))
