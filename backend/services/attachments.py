"""
Attachment Service - upload, lookup and deletion of conversation files.

Uploads return as soon as the bytes are stored and the extraction job is
queued; the caller polls the attachment (or just sends its id in a file
part) while the pipeline works.
"""

import logging
from typing import List, Optional

from config import runtime_config
from errors import ErrorCode, NotFoundError, ValidationError
from services.attachment_pipeline import AttachmentPipeline
from services.chat_store import Attachment, ChatStore, ExtractionStatus, new_id, require_owned_conversation
from services.extraction import categorize
from services.storage import StorageBackend, build_storage_key

logger = logging.getLogger(__name__)


def validate_upload(file_name: str, mime_type: str, size: int) -> str:
    """Check type and size of an upload, returning its content category.

    Raises:
        ValidationError: Empty, oversize or unsupported file
    """
    mime = (mime_type or "").lower()
    if mime not in runtime_config.get_allowed_mime_types():
        raise ValidationError(
            "Unsupported file type",
            details=f"{file_name}: {mime_type or 'unknown'} is not an allowed upload type",
            code=ErrorCode.VALIDATION_UNSUPPORTED_MIME,
            parameter="file",
            received=mime_type,
        )
    if size <= 0:
        raise ValidationError("Empty file", details=file_name, parameter="file")
    if size > runtime_config.max_upload_size_bytes:
        limit_mb = runtime_config.max_upload_size_bytes // (1024 * 1024)
        raise ValidationError(
            f"File too large. Maximum size is {limit_mb}MB",
            details=f"{file_name}: {size} bytes",
            code=ErrorCode.VALIDATION_FILE_TOO_LARGE,
            parameter="file",
        )
    return categorize(mime)


class AttachmentService:
    def __init__(self, store: ChatStore, storage: StorageBackend, pipeline: Optional[AttachmentPipeline]):
        self.store = store
        self.storage = storage
        self.pipeline = pipeline

    async def upload(
        self,
        conversation_id: str,
        user_id: str,
        file_name: str,
        mime_type: str,
        data: bytes,
    ) -> Attachment:
        """Store a file and schedule its extraction.

        Raises:
            NotFoundError / ForbiddenError: Conversation missing or not owned
            ValidationError: Unsupported type or oversize file
            StorageError: Bytes could not be stored
        """
        await require_owned_conversation(self.store, conversation_id, user_id)
        category = validate_upload(file_name, mime_type, len(data))

        key = build_storage_key(conversation_id, file_name)
        locator = await self.storage.put(data, key, mime_type)

        attachment = await self.store.create_attachment(
            Attachment(
                id=new_id(),
                conversation_id=conversation_id,
                file_name=file_name,
                mime_type=mime_type.lower(),
                size=len(data),
                storage_key=key,
                url=locator,
                extraction_status=ExtractionStatus.PENDING,
            )
        )
        logger.info(f"Uploaded {file_name} ({category}, {len(data)} bytes) as {attachment.id}")

        if self.pipeline is not None:
            self.pipeline.submit(attachment.id)
        else:
            logger.warning(f"No extraction pipeline running, {attachment.id} stays pending")
        return attachment

    async def get_attachment(self, attachment_id: str, user_id: str) -> Attachment:
        attachment = await self.store.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError("Attachment not found", resource_type="attachment", resource_id=attachment_id)
        await require_owned_conversation(self.store, attachment.conversation_id, user_id)
        return attachment

    async def list_attachments(self, conversation_id: str, user_id: str) -> List[Attachment]:
        await require_owned_conversation(self.store, conversation_id, user_id)
        return await self.store.list_attachments(conversation_id)

    async def delete_attachment(self, attachment_id: str, user_id: str) -> None:
        """Delete an attachment, its stored object and its thumbnail."""
        attachment = await self.get_attachment(attachment_id, user_id)

        await self.storage.delete(attachment.url)
        if attachment.thumbnail_url:
            await self.storage.delete(attachment.thumbnail_url)

        await self.store.delete_attachment(attachment.id)
        logger.info(f"Deleted attachment {attachment.id} ({attachment.file_name})")
