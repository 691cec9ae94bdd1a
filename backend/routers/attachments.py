"""
Relay Attachments Router

Upload returns 202 as soon as the bytes are stored: text extraction runs in
the background pipeline and clients poll GET /attachments/{id} until
``extraction_status`` is terminal.
"""

import logging

from fastapi import APIRouter, Depends, File, Response, UploadFile

from config import runtime_config
from errors import ErrorCode, ValidationError
from services.attachments import AttachmentService

from .dependencies import get_attachment_service, get_user_id

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/conversations/{conversation_id}/attachments", status_code=202)
async def upload_attachment(
    conversation_id: str,
    file: UploadFile = File(...),
    user_id: str = Depends(get_user_id),
    service: AttachmentService = Depends(get_attachment_service),
):
    """Upload one file into a conversation"""
    # Reject before reading when the client declared the size
    if file.size and file.size > runtime_config.max_upload_size_bytes:
        raise ValidationError(
            "File too large",
            details=f"{file.filename}: {file.size} bytes",
            code=ErrorCode.VALIDATION_FILE_TOO_LARGE,
            parameter="file",
        )
    data = await file.read()

    attachment = await service.upload(
        conversation_id,
        user_id,
        file_name=file.filename or "upload",
        mime_type=file.content_type or "",
        data=data,
    )
    return attachment.to_dict()


@router.get("/conversations/{conversation_id}/attachments")
async def list_attachments(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    service: AttachmentService = Depends(get_attachment_service),
):
    attachments = await service.list_attachments(conversation_id, user_id)
    return {"attachments": [a.to_dict() for a in attachments]}


@router.get("/attachments/{attachment_id}")
async def get_attachment(
    attachment_id: str,
    include_text: bool = False,
    user_id: str = Depends(get_user_id),
    service: AttachmentService = Depends(get_attachment_service),
):
    attachment = await service.get_attachment(attachment_id, user_id)
    return attachment.to_dict(include_text=include_text)


@router.delete("/attachments/{attachment_id}", status_code=204)
async def delete_attachment(
    attachment_id: str,
    user_id: str = Depends(get_user_id),
    service: AttachmentService = Depends(get_attachment_service),
):
    await service.delete_attachment(attachment_id, user_id)
    return Response(status_code=204)
