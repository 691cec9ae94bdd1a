"""
Request-scoped access to the components built at startup.

Everything long-lived (store, storage, LLM client, mode resolver, pipeline)
lives on ``app.state``; routers reach it through these helpers so tests can
swap in fakes by setting the same attributes.
"""

from typing import Optional

from fastapi import Header, Request
from starlette.requests import HTTPConnection

from errors import ErrorCode, ValidationError
from routers.chat_orchestration import ConversationOrchestrator
from services.attachments import AttachmentService
from services.conversations import ConversationService


def require_user_id(user_id: Optional[str]) -> str:
    user_id = (user_id or "").strip()
    if not user_id:
        raise ValidationError(
            "Missing caller identity",
            code=ErrorCode.VALIDATION_MISSING_PARAM,
            parameter="X-User-Id",
        )
    return user_id


async def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """Caller identity, as forwarded by the authenticating proxy."""
    return require_user_id(x_user_id)


def get_conversation_service(request: Request) -> ConversationService:
    state = request.app.state
    return ConversationService(state.store, llm_client=state.llm_client)


def get_attachment_service(request: Request) -> AttachmentService:
    state = request.app.state
    return AttachmentService(state.store, state.storage, state.pipeline)


def build_orchestrator(connection: HTTPConnection) -> ConversationOrchestrator:
    state = connection.app.state
    return ConversationOrchestrator(
        store=state.store,
        assembler=state.assembler,
        resolver=state.resolver,
        llm_client=state.llm_client,
    )
