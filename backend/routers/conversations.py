"""
Relay Conversations Router

CRUD over a user's conversations. The caller is identified by the
``X-User-Id`` header; every route is owner-scoped, so another user's
conversation answers 403 and a missing one 404.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from services.conversations import ConversationService

from .dependencies import get_conversation_service, get_user_id

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateConversationRequest(BaseModel):
    title: Optional[str] = None
    system_prompt: Optional[str] = None
    operational_mode: Optional[str] = None


class IncomingMessage(BaseModel):
    id: Optional[str] = None
    role: str = "user"
    parts: List[Dict[str, Any]] = Field(default_factory=list)
    content: Optional[str] = None


class CreateWithMessageRequest(CreateConversationRequest):
    message: IncomingMessage


class SystemPromptRequest(BaseModel):
    system_prompt: Optional[str] = None


class ModeRequest(BaseModel):
    operational_mode: str


class TitleRequest(BaseModel):
    message: Optional[str] = None


@router.get("/conversations")
async def list_conversations(
    user_id: str = Depends(get_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    return {"conversations": await service.list_conversations(user_id)}


@router.post("/conversations", status_code=201)
async def create_conversation(
    body: CreateConversationRequest,
    user_id: str = Depends(get_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    conversation = await service.create_conversation(
        user_id,
        title=body.title,
        system_prompt=body.system_prompt,
        operational_mode=body.operational_mode,
    )
    return conversation.to_dict()


@router.post("/conversations/with-message", status_code=201)
async def create_conversation_with_message(
    body: CreateWithMessageRequest,
    user_id: str = Depends(get_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    """Create a conversation holding its first message; the answer is streamed separately."""
    conversation = await service.create_conversation_with_first_message(
        user_id,
        body.message.model_dump(exclude_none=True),
        title=body.title,
        system_prompt=body.system_prompt,
        operational_mode=body.operational_mode,
    )
    return conversation.to_dict()


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    return await service.get_conversation(conversation_id, user_id)


@router.delete("/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    await service.delete_conversation(conversation_id, user_id)
    return Response(status_code=204)


@router.patch("/conversations/{conversation_id}/system-prompt")
async def update_system_prompt(
    conversation_id: str,
    body: SystemPromptRequest,
    user_id: str = Depends(get_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    conversation = await service.update_system_prompt(conversation_id, user_id, body.system_prompt)
    return conversation.to_dict()


@router.patch("/conversations/{conversation_id}/mode")
async def update_operational_mode(
    conversation_id: str,
    body: ModeRequest,
    user_id: str = Depends(get_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    conversation = await service.update_operational_mode(conversation_id, user_id, body.operational_mode)
    return conversation.to_dict()


@router.post("/conversations/{conversation_id}/title")
async def generate_title(
    conversation_id: str,
    body: Optional[TitleRequest] = None,
    user_id: str = Depends(get_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    title = await service.generate_title(conversation_id, user_id, body.message if body else None)
    return {"title": title}
