"""
Conversation Service - owner-scoped conversation operations.

Every operation checks ownership first: a missing conversation raises
NotFoundError, someone else's raises ForbiddenError.
"""

import logging
from typing import Any, Dict, List, Optional

from errors import ErrorCode, ValidationError
from routers.chat_orchestration.intent import FALLBACK_TITLE, generate_title
from routers.chat_orchestration.modes import is_valid_mode
from services.chat_store import ChatStore, Conversation, require_owned_conversation
from utils.parts import attachment_ids, extract_text, normalize_message, normalize_parts

logger = logging.getLogger(__name__)

CONTENT_PREVIEW_LENGTH = 100


def _validate_mode(mode: Optional[str]) -> Optional[str]:
    if mode is None:
        return None
    if not is_valid_mode(mode):
        raise ValidationError(
            "Invalid operational mode",
            code=ErrorCode.VALIDATION_INVALID_FORMAT,
            parameter="mode",
            expected="fast | thinking | auto",
            received=str(mode),
        )
    return mode


class ConversationService:
    def __init__(self, store: ChatStore, llm_client=None):
        self.store = store
        self.llm_client = llm_client

    async def create_conversation(
        self,
        user_id: str,
        title: Optional[str] = None,
        system_prompt: Optional[str] = None,
        operational_mode: Optional[str] = None,
    ) -> Conversation:
        conversation = await self.store.create_conversation(
            user_id,
            title=title,
            system_prompt=system_prompt,
            operational_mode=_validate_mode(operational_mode),
        )
        logger.info(f"Created conversation {conversation.id} for {user_id}")
        return conversation

    async def create_conversation_with_first_message(
        self,
        user_id: str,
        message: Dict[str, Any],
        title: Optional[str] = None,
        system_prompt: Optional[str] = None,
        operational_mode: Optional[str] = None,
    ) -> Conversation:
        """Create a conversation holding its first user message (no streaming).

        The client streams the answer afterwards over the chat socket; the
        duplicate check there skips re-persisting this message.
        """
        normalized = normalize_message({**message, "role": "user"})
        text = extract_text(normalized)
        if not text.strip() and not attachment_ids(normalized["parts"]):
            raise ValidationError("Message is empty", code=ErrorCode.VALIDATION_EMPTY_TURN, parameter="message")

        conversation = await self.create_conversation(
            user_id,
            title=title,
            system_prompt=system_prompt,
            operational_mode=operational_mode,
        )
        saved = await self.store.add_message(conversation.id, "user", normalized["parts"], text)
        await self.store.link_attachments(saved.id, attachment_ids(normalized["parts"]))

        if not title:
            generated = await self._title_for(text)
            conversation = await self.store.update_conversation(conversation.id, title=generated) or conversation
        else:
            await self.store.touch_conversation(conversation.id)
        return conversation

    async def list_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        """A user's conversations, most recently active first, with a preview."""
        rows = await self.store.list_conversations(user_id)
        result = []
        for row in rows:
            data = row["conversation"].to_dict()
            last = row.get("last_message")
            data["last_message_preview"] = last[:CONTENT_PREVIEW_LENGTH] if last else None
            result.append(data)
        return result

    async def get_conversation(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        """Conversation with its messages in the parts representation."""
        conversation = await require_owned_conversation(self.store, conversation_id, user_id)
        messages = await self.store.list_messages(conversation_id)
        data = conversation.to_dict()
        data["messages"] = []
        for message in messages:
            item = message.to_dict()
            item["parts"] = normalize_parts(message.parts, message.content)
            data["messages"].append(item)
        return data

    async def update_system_prompt(
        self, conversation_id: str, user_id: str, system_prompt: Optional[str]
    ) -> Conversation:
        await require_owned_conversation(self.store, conversation_id, user_id)
        cleaned = system_prompt.strip() if system_prompt else None
        return await self.store.update_conversation(conversation_id, system_prompt=cleaned or None)

    async def update_operational_mode(self, conversation_id: str, user_id: str, mode: str) -> Conversation:
        """Store the conversation-level mode preference."""
        await require_owned_conversation(self.store, conversation_id, user_id)
        mode = _validate_mode(mode)
        conversation = await self.store.update_conversation(conversation_id, operational_mode=mode)
        logger.info(f"Conversation {conversation_id} mode preference set to {mode}")
        return conversation

    async def delete_conversation(self, conversation_id: str, user_id: str) -> None:
        """Delete a conversation; messages and attachment rows cascade."""
        await require_owned_conversation(self.store, conversation_id, user_id)
        await self.store.delete_conversation(conversation_id)
        logger.info(f"Deleted conversation {conversation_id}")

    async def generate_title(self, conversation_id: str, user_id: str, message: Optional[str] = None) -> str:
        """Title from the given text or the conversation's first user message."""
        await require_owned_conversation(self.store, conversation_id, user_id)
        if message is None:
            messages = await self.store.list_messages(conversation_id)
            first = next((m for m in messages if m.role == "user"), None)
            message = extract_text({"parts": normalize_parts(first.parts, first.content)}) if first else ""

        title = await self._title_for(message)
        await self.store.update_conversation(conversation_id, title=title)
        return title

    async def _title_for(self, text: str) -> str:
        if self.llm_client is None:
            return FALLBACK_TITLE
        return await generate_title(self.llm_client, text)
