"""
Chat Store - Persistence for conversations, messages and attachments.

Records are plain dataclasses; ChatStore issues SQL through the asyncpg
DatabaseManager. Message order is creation order and is load-bearing
(history replay and duplicate detection both depend on it).

Usage:
    from services.chat_store import get_chat_store

    store = await get_chat_store()
    conversation = await store.get_conversation(conversation_id)
"""

import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from services.database import DatabaseManager, get_database

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


class ExtractionStatus(str, Enum):
    """Lifecycle of an attachment's text extraction."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExtractionStatus.SUCCESS, ExtractionStatus.FAILED)


# =============================================================================
# Records
# =============================================================================


@dataclass
class Conversation:
    id: str
    user_id: str
    title: Optional[str] = None
    system_prompt: Optional[str] = None
    operational_mode: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Conversation":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row.get("title"),
            system_prompt=row.get("system_prompt"),
            operational_mode=row.get("operational_mode"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class Message:
    """A persisted chat message.

    `parts` is the ordered list of typed parts; `content` is the flattened
    text kept for legacy rows and duplicate detection.
    """

    id: str
    conversation_id: str
    role: str
    parts: List[Dict[str, Any]] = field(default_factory=list)
    content: str = ""
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Message":
        return cls(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            parts=row.get("parts") or [],
            content=row.get("content") or "",
            metadata=row.get("metadata"),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["created_at"] is not None:
            data["created_at"] = data["created_at"].isoformat()
        return data


@dataclass
class Attachment:
    id: str
    conversation_id: str
    file_name: str
    mime_type: str
    size: int
    storage_key: str
    url: str
    message_id: Optional[str] = None
    extraction_status: ExtractionStatus = ExtractionStatus.PENDING
    extracted_text: Optional[str] = None
    extraction_metadata: Optional[Dict[str, Any]] = None
    thumbnail_key: Optional[str] = None
    thumbnail_url: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Attachment":
        return cls(
            id=row["id"],
            conversation_id=row["conversation_id"],
            message_id=row.get("message_id"),
            file_name=row["file_name"],
            mime_type=row["mime_type"],
            size=row["size"],
            storage_key=row["storage_key"],
            url=row["url"],
            extraction_status=ExtractionStatus(row.get("extraction_status") or "pending"),
            extracted_text=row.get("extracted_text"),
            extraction_metadata=row.get("extraction_metadata"),
            thumbnail_key=row.get("thumbnail_key"),
            thumbnail_url=row.get("thumbnail_url"),
            created_at=row.get("created_at"),
        )

    def to_dict(self, include_text: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "size": self.size,
            "url": self.url,
            "thumbnail_url": self.thumbnail_url,
            "extraction_status": self.extraction_status.value,
            "extraction_metadata": self.extraction_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_text:
            data["extracted_text"] = self.extracted_text
        return data


# =============================================================================
# Store
# =============================================================================

_CONVERSATION_COLUMNS = {"title", "system_prompt", "operational_mode"}
_ATTACHMENT_COLUMNS = {
    "extraction_status",
    "extracted_text",
    "extraction_metadata",
    "thumbnail_key",
    "thumbnail_url",
    "message_id",
}


class ChatStore:
    """SQL-backed repository over conversations, messages and attachments."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    # --- Conversations -------------------------------------------------------

    async def create_conversation(
        self,
        user_id: str,
        title: Optional[str] = None,
        system_prompt: Optional[str] = None,
        operational_mode: Optional[str] = None,
    ) -> Conversation:
        row = await self.db.fetchrow(
            """
            INSERT INTO conversations (id, user_id, title, system_prompt, operational_mode)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
            """,
            new_id(), user_id, title, system_prompt, operational_mode,
        )
        return Conversation.from_row(row)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        row = await self.db.fetchrow("SELECT * FROM conversations WHERE id = $1", conversation_id)
        return Conversation.from_row(row) if row else None

    async def list_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        """List a user's conversations, newest first, with the latest message text."""
        rows = await self.db.fetch(
            """
            SELECT c.*, m.content AS last_message
            FROM conversations c
            LEFT JOIN LATERAL (
                SELECT content FROM messages
                WHERE conversation_id = c.id
                ORDER BY created_at DESC
                LIMIT 1
            ) m ON TRUE
            WHERE c.user_id = $1
            ORDER BY c.updated_at DESC
            """,
            user_id,
        )
        return [
            {"conversation": Conversation.from_row(row), "last_message": row.get("last_message")}
            for row in rows
        ]

    async def update_conversation(self, conversation_id: str, **fields: Any) -> Optional[Conversation]:
        columns = [k for k in fields if k in _CONVERSATION_COLUMNS]
        if not columns:
            return await self.get_conversation(conversation_id)
        assignments = ", ".join(f"{col} = ${i + 2}" for i, col in enumerate(columns))
        row = await self.db.fetchrow(
            f"UPDATE conversations SET {assignments}, updated_at = now() WHERE id = $1 RETURNING *",
            conversation_id,
            *[fields[col] for col in columns],
        )
        return Conversation.from_row(row) if row else None

    async def touch_conversation(self, conversation_id: str) -> None:
        await self.db.execute("UPDATE conversations SET updated_at = now() WHERE id = $1", conversation_id)

    async def delete_conversation(self, conversation_id: str) -> None:
        await self.db.execute("DELETE FROM conversations WHERE id = $1", conversation_id)

    # --- Messages ------------------------------------------------------------

    async def list_messages(self, conversation_id: str) -> List[Message]:
        rows = await self.db.fetch(
            "SELECT * FROM messages WHERE conversation_id = $1 ORDER BY created_at ASC",
            conversation_id,
        )
        return [Message.from_row(row) for row in rows]

    async def latest_user_messages(self, conversation_id: str, limit: int = 1) -> List[Message]:
        """Most recent user messages, newest first."""
        rows = await self.db.fetch(
            """
            SELECT * FROM messages
            WHERE conversation_id = $1 AND role = 'user'
            ORDER BY created_at DESC
            LIMIT $2
            """,
            conversation_id, limit,
        )
        return [Message.from_row(row) for row in rows]

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        parts: List[Dict[str, Any]],
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        row = await self.db.fetchrow(
            """
            INSERT INTO messages (id, conversation_id, role, content, parts, metadata)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING *
            """,
            new_id(), conversation_id, role, content, parts, metadata,
        )
        return Message.from_row(row)

    # --- Attachments ---------------------------------------------------------

    async def create_attachment(self, attachment: Attachment) -> Attachment:
        row = await self.db.fetchrow(
            """
            INSERT INTO attachments
                (id, conversation_id, message_id, file_name, mime_type, size,
                 storage_key, url, extraction_status)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *
            """,
            attachment.id,
            attachment.conversation_id,
            attachment.message_id,
            attachment.file_name,
            attachment.mime_type,
            attachment.size,
            attachment.storage_key,
            attachment.url,
            attachment.extraction_status.value,
        )
        return Attachment.from_row(row)

    async def get_attachment(self, attachment_id: str) -> Optional[Attachment]:
        row = await self.db.fetchrow("SELECT * FROM attachments WHERE id = $1", attachment_id)
        return Attachment.from_row(row) if row else None

    async def list_attachments(self, conversation_id: str) -> List[Attachment]:
        """All attachments of a conversation in one batched query."""
        rows = await self.db.fetch(
            "SELECT * FROM attachments WHERE conversation_id = $1 ORDER BY created_at ASC",
            conversation_id,
        )
        return [Attachment.from_row(row) for row in rows]

    async def update_attachment(self, attachment_id: str, **fields: Any) -> Optional[Attachment]:
        columns = [k for k in fields if k in _ATTACHMENT_COLUMNS]
        if not columns:
            return await self.get_attachment(attachment_id)
        values = []
        for col in columns:
            value = fields[col]
            if isinstance(value, ExtractionStatus):
                value = value.value
            values.append(value)
        assignments = ", ".join(f"{col} = ${i + 2}" for i, col in enumerate(columns))
        row = await self.db.fetchrow(
            f"UPDATE attachments SET {assignments} WHERE id = $1 RETURNING *",
            attachment_id,
            *values,
        )
        return Attachment.from_row(row) if row else None

    async def link_attachments(self, message_id: str, attachment_ids: List[str]) -> None:
        if not attachment_ids:
            return
        await self.db.execute(
            "UPDATE attachments SET message_id = $1 WHERE id = ANY($2::text[])",
            message_id, list(attachment_ids),
        )
        logger.debug(f"Linked {len(attachment_ids)} attachments to message {message_id}")

    async def delete_attachment(self, attachment_id: str) -> None:
        await self.db.execute("DELETE FROM attachments WHERE id = $1", attachment_id)


async def get_chat_store() -> ChatStore:
    """Build a ChatStore on the shared database manager."""
    return ChatStore(await get_database())


async def require_owned_conversation(store: ChatStore, conversation_id: str, user_id: str) -> Conversation:
    """Load a conversation and check the caller owns it.

    Raises:
        NotFoundError: If the conversation does not exist
        ForbiddenError: If it belongs to another user
    """
    from errors import ForbiddenError, NotFoundError

    conversation = await store.get_conversation(conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found", resource_type="conversation", resource_id=conversation_id)
    if conversation.user_id != user_id:
        raise ForbiddenError(
            "You do not have access to this conversation",
            resource_type="conversation",
            resource_id=conversation_id,
        )
    return conversation
