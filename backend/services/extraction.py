"""
Attachment Extraction - text, OCR and thumbnails for uploaded files.

- PDF: PyMuPDF page text
- Word: python-docx paragraphs
- Images: Pillow thumbnail + Tesseract OCR

The OCR engine is process-wide: initialized on first use, released on
shutdown. Document extractor failures raise ParseError; OCR failures are
handled by the caller (they degrade, they do not fail the job).
"""

import io
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import fitz
import pytesseract
from docx import Document
from PIL import Image, ImageOps

from errors import ParseError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# File Categories
# =============================================================================

IMAGE = "image"
PDF = "pdf"
DOCUMENT = "document"
VIDEO = "video"
AUDIO = "audio"


def categorize(mime_type: str) -> str:
    """Map a MIME type to a content category.

    Raises:
        ValidationError: If the MIME type is not supported
    """
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return IMAGE
    if mime == "application/pdf":
        return PDF
    if "word" in mime or "document" in mime or "officedocument" in mime:
        return DOCUMENT
    if mime.startswith("video/"):
        return VIDEO
    if mime.startswith("audio/"):
        return AUDIO
    raise ValidationError(
        "Unsupported file type",
        details=f"Cannot process files of type {mime_type!r}",
        parameter="mime_type",
        received=mime_type,
    )


@dataclass
class ExtractionResult:
    text: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Document Text
# =============================================================================


def extract_pdf_text(data: bytes) -> ExtractionResult:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            pages = [page.get_text() for page in doc]
        finally:
            doc.close()
    except Exception as e:
        raise ParseError("Could not read PDF", details=str(e), file_type=PDF) from e

    text = "\n\n".join(p.strip() for p in pages if p.strip())
    return ExtractionResult(text=text, metadata={"pages": len(pages), "chars": len(text)})


def extract_document_text(data: bytes) -> ExtractionResult:
    try:
        doc = Document(io.BytesIO(data))
    except Exception as e:
        raise ParseError("Could not read Word document", details=str(e), file_type=DOCUMENT) from e

    paragraphs = [para.text for para in doc.paragraphs if para.text.strip()]
    text = "\n\n".join(paragraphs)
    return ExtractionResult(text=text, metadata={"paragraphs": len(paragraphs), "chars": len(text)})


def extract_text(data: bytes, mime_type: str) -> ExtractionResult:
    """Extract text from a PDF or Word document.

    Other categories yield an empty result; images go through OCREngine.
    """
    category = categorize(mime_type)
    if category == PDF:
        return extract_pdf_text(data)
    if category == DOCUMENT:
        return extract_document_text(data)
    return ExtractionResult(metadata={"category": category, "extracted": False})


# =============================================================================
# Images
# =============================================================================


def make_thumbnail(data: bytes, max_size: int = 300, quality: int = 80) -> bytes:
    """JPEG thumbnail whose longest side is at most ``max_size`` pixels."""
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        img.thumbnail((max_size, max_size))
        if img.mode != "RGB":
            img = img.convert("RGB")
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality)
        return out.getvalue()


class OCREngine:
    """Shared Tesseract wrapper.

    Tesseract is probed lazily on the first recognize() call; calls are
    serialized since the engine is an expensive shared resource.
    """

    def __init__(self, language: str = "eng"):
        self.language = language
        self._lock = threading.Lock()
        self._version: Optional[str] = None

    @property
    def initialized(self) -> bool:
        return self._version is not None

    def _ensure_initialized(self) -> None:
        if self._version is None:
            self._version = str(pytesseract.get_tesseract_version())
            logger.info(f"OCR engine initialized (tesseract {self._version}, lang={self.language})")

    def recognize(self, data: bytes) -> str:
        with self._lock:
            self._ensure_initialized()
            with Image.open(io.BytesIO(data)) as img:
                return pytesseract.image_to_string(img, lang=self.language).strip()

    def release(self) -> None:
        with self._lock:
            if self._version is not None:
                logger.info("OCR engine released")
            self._version = None


_ocr_engine: Optional[OCREngine] = None
_ocr_lock = threading.Lock()


def get_ocr_engine() -> OCREngine:
    """Get the process-wide OCR engine (created on first use)."""
    global _ocr_engine
    with _ocr_lock:
        if _ocr_engine is None:
            from config import runtime_config
            _ocr_engine = OCREngine(language=runtime_config.ocr_language)
        return _ocr_engine


def release_ocr_engine() -> None:
    """Release the OCR engine (call on shutdown)."""
    global _ocr_engine
    with _ocr_lock:
        if _ocr_engine is not None:
            _ocr_engine.release()
            _ocr_engine = None
