"""
Attachment Pipeline - background extraction jobs for uploaded files.

State machine per attachment:

    PENDING ──▶ PROCESSING ──▶ SUCCESS
                          └──▶ FAILED

SUCCESS and FAILED are terminal. Jobs are queued on an asyncio.Queue and
drained by a fixed pool of worker tasks, so uploads never wait on
extraction and heavy upload bursts simply lengthen the queue.

Dispatch by category:
- image    → thumbnail + OCR; OCR failure degrades to empty text (noted in metadata)
- pdf/doc  → text extractor; a failure marks the attachment FAILED
- other    → SUCCESS with empty text

Retries (document extraction and storage reads) are a configurable policy,
off by default; they run while the job is still PROCESSING.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from errors import ErrorCode, RelayError, ValidationError
from logging_config import log_attachment
from services.chat_store import Attachment, ChatStore, ExtractionStatus
from services.extraction import (
    DOCUMENT,
    IMAGE,
    PDF,
    ExtractionResult,
    OCREngine,
    categorize,
    extract_text,
    get_ocr_engine,
    make_thumbnail,
)
from services.storage import StorageBackend, thumbnail_key

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    ExtractionStatus.PENDING: {ExtractionStatus.PROCESSING},
    ExtractionStatus.PROCESSING: {ExtractionStatus.SUCCESS, ExtractionStatus.FAILED},
    ExtractionStatus.SUCCESS: set(),
    ExtractionStatus.FAILED: set(),
}


class InvalidTransition(RelayError):
    """Raised when an attachment would leave a terminal state or skip a step."""

    code = ErrorCode.INTERNAL_STATE_ERROR


def check_transition(current: ExtractionStatus, target: ExtractionStatus) -> None:
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Illegal extraction status transition {current.value} -> {target.value}",
        )


class AttachmentPipeline:
    """Worker pool that moves attachments through the extraction state machine.

    Args:
        store: ChatStore used to read and update attachments
        storage: Backend holding the uploaded bytes
        workers: Number of concurrent extraction workers
        max_retries: Extra attempts for document extraction / storage reads
        retry_delay: Base delay between attempts (doubles each retry)
        thumbnail_max_size: Longest thumbnail side in pixels
        thumbnail_quality: JPEG quality for thumbnails
        ocr_engine_factory: Returns the shared OCR engine (lazy)
    """

    def __init__(
        self,
        store: ChatStore,
        storage: StorageBackend,
        workers: int = 2,
        max_retries: int = 0,
        retry_delay: float = 2.0,
        thumbnail_max_size: int = 300,
        thumbnail_quality: int = 80,
        ocr_engine_factory: Callable[[], OCREngine] = get_ocr_engine,
    ):
        self.store = store
        self.storage = storage
        self.worker_count = max(1, workers)
        self.max_retries = max(0, max_retries)
        self.retry_delay = retry_delay
        self.thumbnail_max_size = thumbnail_max_size
        self.thumbnail_quality = thumbnail_quality
        self._ocr_engine_factory = ocr_engine_factory
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []

    # --- Lifecycle -------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(not w.done() for w in self._workers)

    @property
    def pending_jobs(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"extraction-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Attachment pipeline started ({self.worker_count} workers, max_retries={self.max_retries})")

    async def stop(self, drain: bool = False) -> None:
        """Stop the workers, optionally waiting for queued jobs first."""
        if drain and self.running:
            await self._queue.join()
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Attachment pipeline stopped")

    def submit(self, attachment_id: str) -> None:
        """Schedule extraction for an attachment (never blocks)."""
        self._queue.put_nowait(attachment_id)
        logger.debug(f"Queued extraction for {attachment_id} (queue={self._queue.qsize()})")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            attachment_id = await self._queue.get()
            try:
                await self.process(attachment_id)
            except Exception as e:
                logger.error(f"Extraction worker {index} failed on {attachment_id}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    # --- Job -------------------------------------------------------------------

    async def process(self, attachment_id: str) -> Optional[Attachment]:
        """Run one extraction job to a terminal state."""
        attachment = await self.store.get_attachment(attachment_id)
        if attachment is None:
            logger.info(f"Attachment {attachment_id} deleted before extraction, skipping")
            return None
        if attachment.extraction_status != ExtractionStatus.PENDING:
            logger.debug(f"Attachment {attachment_id} already {attachment.extraction_status.value}, skipping")
            return attachment

        attachment = await self._transition(attachment, ExtractionStatus.PROCESSING)

        try:
            category = categorize(attachment.mime_type)
        except ValidationError:
            category = "other"

        try:
            if category == IMAGE:
                return await self._process_image(attachment)
            if category in (PDF, DOCUMENT):
                return await self._process_document(attachment, category)
            return await self._transition(
                attachment,
                ExtractionStatus.SUCCESS,
                extracted_text="",
                extraction_metadata={"category": category, "extracted": False},
            )
        except InvalidTransition:
            raise
        except Exception as e:
            logger.error(f"Extraction crashed for {attachment.id}: {e}", exc_info=True)
            return await self._transition(
                attachment,
                ExtractionStatus.FAILED,
                extraction_metadata={"category": category, "error": str(e)},
            )

    async def _process_image(self, attachment: Attachment) -> Attachment:
        metadata: Dict[str, Any] = {"category": IMAGE}
        data = await self._read_with_retries(attachment)

        try:
            thumb = await asyncio.to_thread(
                make_thumbnail, data, self.thumbnail_max_size, self.thumbnail_quality
            )
            key = thumbnail_key(attachment.storage_key, attachment.file_name)
            thumb_url = await self.storage.put(thumb, key, "image/jpeg")
            metadata["thumbnail"] = True
        except Exception as e:
            logger.warning(f"Thumbnail failed for {attachment.file_name}: {e}")
            key, thumb_url = None, None
            metadata["thumbnail_error"] = str(e)

        text = ""
        try:
            engine = self._ocr_engine_factory()
            text = await asyncio.to_thread(engine.recognize, data)
            metadata["ocr_chars"] = len(text)
        except Exception as e:
            logger.warning(f"OCR failed for {attachment.file_name}: {e}")
            metadata["ocr_error"] = str(e)

        return await self._transition(
            attachment,
            ExtractionStatus.SUCCESS,
            extracted_text=text,
            extraction_metadata=metadata,
            thumbnail_key=key,
            thumbnail_url=thumb_url,
        )

    async def _process_document(self, attachment: Attachment, category: str) -> Attachment:
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.info(f"Retry {attempt}/{self.max_retries} for {attachment.file_name} after {delay:.1f}s")
                await asyncio.sleep(delay)
            try:
                data = await self.storage.get(attachment.url)
                result: ExtractionResult = await asyncio.to_thread(extract_text, data, attachment.mime_type)
            except Exception as e:
                last_error = e
                logger.warning(f"Extraction attempt {attempt + 1} failed for {attachment.file_name}: {e}")
                continue

            metadata = {"category": category, **result.metadata}
            if attempt:
                metadata["attempts"] = attempt + 1
            return await self._transition(
                attachment,
                ExtractionStatus.SUCCESS,
                extracted_text=result.text,
                extraction_metadata=metadata,
            )

        return await self._transition(
            attachment,
            ExtractionStatus.FAILED,
            extraction_metadata={
                "category": category,
                "error": str(last_error),
                "attempts": self.max_retries + 1,
            },
        )

    async def _read_with_retries(self, attachment: Attachment) -> bytes:
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))
            try:
                return await self.storage.get(attachment.url)
            except Exception as e:
                if attempt >= self.max_retries:
                    raise
                logger.warning(f"Storage read failed for {attachment.file_name}, retrying: {e}")
        raise RuntimeError("unreachable")

    async def _transition(self, attachment: Attachment, target: ExtractionStatus, **fields: Any) -> Attachment:
        check_transition(attachment.extraction_status, target)
        updated = await self.store.update_attachment(attachment.id, extraction_status=target, **fields)
        log_attachment(logger, attachment.id, target.value, file=attachment.file_name)
        if updated is None:
            # Row deleted mid-job; keep the in-memory view consistent
            attachment.extraction_status = target
            return attachment
        return updated
