"""
Relay Chat Router - WebSocket Handler

One socket per open conversation. Each client frame is a turn:

    {"messages": [...], "mode": "auto" | "fast" | "thinking"}

and is answered with a start event, text deltas, and exactly one terminal
event (``stream`` with ``done: true`` or ``error``). Turn orchestration
lives in chat_orchestration/; this module only owns the socket.

Closing the socket mid-answer cancels the turn. Whatever was generated so
far is persisted as a partial assistant message.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from errors import ErrorCode, RelayError, ValidationError, error_response, log_error

from .chat_orchestration import ConversationOrchestrator
from .dependencies import build_orchestrator, require_user_id

logger = logging.getLogger(__name__)

router = APIRouter()


def _error_event(error: RelayError) -> Dict[str, Any]:
    return {"type": "error", "error": error_response(error, include_context=False)["error"]}


def _parse_turn(raw: str) -> Dict[str, Any]:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ValidationError(
            "Frame is not valid JSON",
            code=ErrorCode.VALIDATION_INVALID_FORMAT,
            details=str(e),
        ) from e
    if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
        raise ValidationError(
            "Expected an object with a messages list",
            code=ErrorCode.VALIDATION_INVALID_FORMAT,
            parameter="messages",
        )
    return data


async def _send_events(websocket: WebSocket, stream) -> None:
    try:
        async for event in stream:
            await websocket.send_json(event)
    finally:
        # Close the generator here so partial persistence runs inside this task
        await stream.aclose()


async def _run_turn(
    websocket: WebSocket,
    orchestrator: ConversationOrchestrator,
    conversation_id: str,
    user_id: str,
    raw: str,
) -> Tuple[bool, Optional[str]]:
    """Answer one turn.

    Returns:
        (keep_open, next_frame): keep_open is False once the client has gone
        away; next_frame is a frame that arrived just as the answer finished.
    """
    try:
        turn = _parse_turn(raw)
        plan = await orchestrator.prepare_turn(conversation_id, user_id, turn["messages"], turn.get("mode"))
    except RelayError as e:
        await websocket.send_json(_error_event(e))
        return True, None

    sender = asyncio.create_task(_send_events(websocket, orchestrator.stream_turn(plan)))
    next_frame = None
    try:
        while True:
            listener = asyncio.create_task(websocket.receive())
            done, _ = await asyncio.wait({sender, listener}, return_when=asyncio.FIRST_COMPLETED)

            if listener not in done:
                listener.cancel()
                await asyncio.gather(listener, return_exceptions=True)
                break

            message = listener.result()
            if message.get("type") == "websocket.disconnect":
                logger.info(f"Client left conversation {conversation_id} mid-answer, cancelling")
                sender.cancel()
                await asyncio.gather(sender, return_exceptions=True)
                return False, None

            if sender in done:
                next_frame = message.get("text")
                break

            # One turn at a time per socket; a frame sent mid-answer is dropped
            logger.warning(f"Ignoring frame received while answering in {conversation_id}")
    except asyncio.CancelledError:
        # Handler cancelled (server shutdown); the answer task must not outlive it
        sender.cancel()
        listener.cancel()
        raise

    try:
        await sender
    except WebSocketDisconnect:
        return False, None
    return True, next_frame


@router.websocket("/ws/chat/{conversation_id}")
async def chat_websocket(websocket: WebSocket, conversation_id: str, user_id: Optional[str] = None):
    """WebSocket endpoint for one conversation."""
    await websocket.accept()

    try:
        caller = require_user_id(user_id or websocket.headers.get("X-User-Id"))
    except ValidationError as e:
        await websocket.send_json(_error_event(e))
        await websocket.close(code=1008, reason="Missing caller identity")
        return

    orchestrator = build_orchestrator(websocket)
    logger.info(f"Chat connected: conversation {conversation_id}")

    raw: Optional[str] = None
    try:
        while True:
            if raw is None:
                raw = await websocket.receive_text()
            try:
                keep_open, raw = await _run_turn(websocket, orchestrator, conversation_id, caller, raw)
            except WebSocketDisconnect:
                raise
            except Exception as e:
                log_error(logger, e, context=f"Chat turn {conversation_id}")
                await websocket.send_json(_error_event(RelayError("Chat turn failed", details=str(e))))
                raw = None
                continue
            if not keep_open:
                break
    except WebSocketDisconnect:
        logger.info(f"Chat disconnected: conversation {conversation_id}")
