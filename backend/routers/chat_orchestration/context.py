"""
Context Assembler - conversation history → provider-ready messages.

Two stages, so mode resolution can run on the enriched history in between:

load_history(conversation)
    1. stored messages in creation order, system prompt prepended
    2. file parts enriched from one batched attachment lookup
       SUCCESS    → extracted text, truncated to the per-document budget
       PROCESSING → "still reading" placeholder
       otherwise  → untouched
    3. advisory warning when the total text exceeds the context budget

finalize(history, system_prompt)
    4. image window: images survive only in the most recent N image-bearing
       user messages, older ones become a text placeholder
    5. local image references read from storage and inlined as base64
    6. provider conversion, then image restoration
"""

import asyncio
import base64
import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from config import runtime_config
from errors import NotFoundError
from services.chat_store import Attachment, ChatStore, Conversation, ExtractionStatus, Message
from services.llm_client import to_provider_messages
from services.storage import StorageBackend
from utils.parts import context_text, image_ref, normalize_parts, text_part

from .image_restore import restore_images

logger = logging.getLogger(__name__)

OMITTED_IMAGE_TEXT = "[previous image omitted]"


def is_inline_ref(ref: str) -> bool:
    """Absolute URLs and data URIs are handed to the provider as they are."""
    return ref.startswith(("http://", "https://", "data:"))


def file_content_text(file_name: str, text: str, max_chars: int, max_tokens: int) -> str:
    if len(text) > max_chars:
        text = text[:max_chars] + f"... [Text Truncated at {max_tokens} tokens.]"
    return f"\n\n[File Content: {file_name}]:\n{text}"


def processing_text(file_name: str) -> str:
    return f'\n\n[System: I am currently reading the file "{file_name}". Please wait a moment.]'


def message_to_dict(message: Message) -> Dict[str, Any]:
    data = {
        "id": message.id,
        "role": message.role,
        "parts": normalize_parts(message.parts, message.content),
    }
    if message.metadata:
        data["metadata"] = message.metadata
    return data


class ContextAssembler:
    """Builds the message list sent to the model for a conversation.

    Budgets default to the live runtime config and can be pinned per instance.
    """

    def __init__(
        self,
        store: ChatStore,
        storage: StorageBackend,
        image_window: Optional[int] = None,
        max_document_tokens: Optional[int] = None,
        max_total_context_tokens: Optional[int] = None,
        chars_per_token: Optional[int] = None,
        converter: Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]] = to_provider_messages,
    ):
        self.store = store
        self.storage = storage
        self._image_window = image_window
        self._max_document_tokens = max_document_tokens
        self._max_total_context_tokens = max_total_context_tokens
        self._chars_per_token = chars_per_token
        self.converter = converter

    @property
    def image_window(self) -> int:
        return self._image_window if self._image_window is not None else runtime_config.image_window

    @property
    def chars_per_token(self) -> int:
        return self._chars_per_token or runtime_config.chars_per_token

    @property
    def max_document_tokens(self) -> int:
        return self._max_document_tokens or runtime_config.max_document_tokens

    @property
    def max_document_chars(self) -> int:
        return self.max_document_tokens * self.chars_per_token

    @property
    def max_total_context_tokens(self) -> int:
        return self._max_total_context_tokens or runtime_config.max_total_context_tokens

    # --- Full pipeline --------------------------------------------------------

    async def assemble(self, conversation_id: str) -> List[Dict[str, Any]]:
        """Provider-ready messages for a conversation."""
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found", resource_type="conversation", resource_id=conversation_id)
        history = await self.load_history(conversation)
        return await self.finalize(history)

    # --- Stage 1 --------------------------------------------------------------

    async def load_history(self, conversation: Conversation) -> List[Dict[str, Any]]:
        """Stored messages in the parts representation, attachments inlined."""
        messages = await self.store.list_messages(conversation.id)
        attachments = {a.id: a for a in await self.store.list_attachments(conversation.id)}
        logger.debug(f"Loaded {len(messages)} messages and {len(attachments)} attachments for {conversation.id}")

        history: List[Dict[str, Any]] = []
        if conversation.system_prompt:
            history.append({"id": "system", "role": "system", "parts": [text_part(conversation.system_prompt)]})

        for message in messages:
            data = message_to_dict(message)
            data["parts"] = [self._enrich_part(part, attachments) for part in data["parts"]]
            history.append(data)

        self.check_budget(history, conversation.id)
        return history

    def _enrich_part(self, part: Dict[str, Any], attachments: Dict[str, Attachment]) -> Dict[str, Any]:
        if part.get("type") != "file" or not part.get("attachmentId"):
            return part
        attachment = attachments.get(str(part["attachmentId"]))
        if attachment is None:
            return part

        if attachment.extraction_status == ExtractionStatus.SUCCESS:
            text = file_content_text(
                attachment.file_name,
                attachment.extracted_text or "",
                self.max_document_chars,
                self.max_document_tokens,
            )
            return {**part, "text": text}
        if attachment.extraction_status == ExtractionStatus.PROCESSING:
            return {**part, "text": processing_text(attachment.file_name)}
        return part

    def check_budget(self, history: List[Dict[str, Any]], conversation_id: str = "") -> int:
        """Warn when the assembled text exceeds the total context budget."""
        total_chars = sum(len(context_text(m)) for m in history)
        if total_chars > self.max_total_context_tokens * self.chars_per_token:
            logger.warning(
                f"Conversation {conversation_id} context size (~{round(total_chars / self.chars_per_token)} tokens) "
                f"exceeds safe limit ({self.max_total_context_tokens} tokens). Accuracy may decrease."
            )
        return total_chars

    # --- Stage 2 --------------------------------------------------------------

    async def finalize(
        self,
        history: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Window images, inline local references and convert for the provider.

        Args:
            history: Output of load_history
            system_prompt: Replaces any system message in the history when given
        """
        messages = copy.deepcopy(history)
        if system_prompt is not None:
            messages = [m for m in messages if m.get("role") != "system"]
            messages.insert(0, {"id": "system", "role": "system", "parts": [text_part(system_prompt)]})

        messages = self.apply_image_window(messages)
        messages = await self.resolve_images(messages)

        converted = self.converter(messages)
        return restore_images(messages, converted)

    def apply_image_window(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Keep image parts only in the last ``image_window`` user messages."""
        window = self.image_window
        seen = 0
        kept = 0
        omitted = 0
        result = []

        for message in reversed(messages):
            if message.get("role") != "user":
                result.append(message)
                continue
            seen += 1
            parts = message.get("parts") or []
            if not any(p.get("type") == "image" for p in parts):
                result.append(message)
                continue
            if seen <= window:
                kept += 1
                result.append(message)
                continue
            new_parts = [text_part(OMITTED_IMAGE_TEXT) if p.get("type") == "image" else p for p in parts]
            omitted += sum(1 for p in parts if p.get("type") == "image")
            result.append({**message, "parts": new_parts})

        result.reverse()
        if omitted:
            logger.info(f"Image window: kept images in {kept} user messages, omitted {omitted} older images")
        return result

    async def resolve_images(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Inline local image references as data URIs; failures keep the original ref."""

        async def resolve_message(message: Dict[str, Any]) -> Dict[str, Any]:
            parts = message.get("parts") or []
            if not any(p.get("type") == "image" and image_ref(p) and not is_inline_ref(image_ref(p)) for p in parts):
                return message
            resolved = [await self._resolve_part(p) if p.get("type") == "image" else p for p in parts]
            return {**message, "parts": resolved}

        return list(await asyncio.gather(*(resolve_message(m) for m in messages)))

    async def _resolve_part(self, part: Dict[str, Any]) -> Dict[str, Any]:
        ref = image_ref(part)
        if not ref or is_inline_ref(ref):
            return part
        try:
            data = await self.storage.get(ref)
        except Exception as e:
            logger.warning(f"Failed to resolve image {ref}: {e}")
            return part
        mime_type = part.get("mimeType") or "image/jpeg"
        encoded = base64.b64encode(data).decode("ascii")
        return {**part, "image": f"data:{mime_type};base64,{encoded}"}
