"""
Extraction Strategies
═════════════════════

One strategy per (processType, fileType) family:

  StandardOcrStrategy     standard-ocr  + image/*      vision model on the public URL
  MagicDiagramStrategy    magic-diagram + image/*      sketch → clean diagram PNG
  PdfPendingStrategy      any           + *pdf*        descriptive "not implemented" result
  PlainTextStrategy       any           + text/plain, text/markdown   UTF-8 passthrough
  UnsupportedStrategy     everything else              descriptive "unsupported" result

Contract:
  - run() returns an ExtractionResult for every outcome it understands,
    including deterministic failures (PDF, unsupported type).
  - run() MAY raise on infrastructure/provider failures; ContentExtractor
    converts those into an error result using `error_prefix`.
  - Strategies hold no per-record state and are safe to reuse across a batch.
"""

from __future__ import annotations

import base64
import logging
import math
import os
import secrets
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from note_companion.db.uploads_repo import UploadRecord
from note_companion.llm.vision import ImageEditModel, VisionOcrModel
from note_companion.schemas.uploads import UploadStatus

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Fixed placeholder cost billed for one magic-diagram generation
MAGIC_DIAGRAM_TOKEN_COST = 5000

OCR_EMPTY_PLACEHOLDER = "[OCR completed, but no text extracted]"
PDF_PENDING_ERROR = "PDF processing not yet implemented."
PDF_PENDING_PLACEHOLDER = "[PDF Content - Processing Pending Implementation]"

MAGIC_DIAGRAM_PROMPT = (
    "Digitize this sketch image into a clean, well-rendered diagram suitable "
    "for digital files. Preserve the core elements and connections shown in "
    "the sketch. Original filename for context: {name}."
)

TEXT_FILE_TYPES: frozenset[str] = frozenset({"text/plain", "text/markdown"})

_IMAGE_MIME_BY_EXTENSION = {
    ".jpg":  "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtractionResult:
    """
    What the worker commits to the record.

    status               completed | error
    text_content         extracted text, or a placeholder for deterministic errors
    generated_image_url  magic-diagram output only
    tokens_used          billable cost; 0 for every error result
    error                failure reason, None on success
    """
    status:              UploadStatus
    text_content:        str | None = None
    generated_image_url: str | None = None
    tokens_used:         int = 0
    error:               str | None = None

    @classmethod
    def text(cls, text: str, tokens_used: int = 0) -> "ExtractionResult":
        return cls(UploadStatus.COMPLETED, text_content=text, tokens_used=tokens_used)

    @classmethod
    def image(cls, url: str, tokens_used: int) -> "ExtractionResult":
        return cls(UploadStatus.COMPLETED, generated_image_url=url, tokens_used=tokens_used)

    @classmethod
    def failed(cls, error: str, text_content: str | None = None) -> "ExtractionResult":
        return cls(UploadStatus.ERROR, text_content=text_content, error=error)

    @property
    def is_completed(self) -> bool:
        return self.status == UploadStatus.COMPLETED


class ObjectStore(Protocol):
    """The slice of the R2 gateway the strategies use."""

    async def download(self, key: str) -> bytes: ...

    async def upload(self, key: str, body: bytes, content_type: str) -> None: ...

    def public_url(self, key: str) -> str: ...


# ---------------------------------------------------------------------------
# Abstract strategy
# ---------------------------------------------------------------------------

class ExtractionStrategy(ABC):

    # Strategies that read the raw bytes need the object key resolved first
    needs_object_key: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for logging."""

    @property
    def error_prefix(self) -> str:
        """Prepended to the message of an exception raised by run()."""
        return f"Error during {self.name}"

    @abstractmethod
    async def run(self, record: UploadRecord, object_key: str | None) -> ExtractionResult:
        ...


# ---------------------------------------------------------------------------
# standard-ocr + image/*
# ---------------------------------------------------------------------------

class StandardOcrStrategy(ExtractionStrategy):
    """Markdown transcription of an image through its public URL."""

    def __init__(self, ocr: VisionOcrModel) -> None:
        self._ocr = ocr

    @property
    def name(self) -> str:
        return "standard-ocr"

    @property
    def error_prefix(self) -> str:
        return "Error processing image OCR"

    async def run(self, record: UploadRecord, object_key: str | None) -> ExtractionResult:
        if not record.public_url:
            raise ValueError(f"Missing public URL for OCR processing of file ID {record.id}")

        transcript = await self._ocr.transcribe(record.public_url)
        text = transcript.text or ""

        if transcript.total_tokens is not None:
            tokens = transcript.total_tokens
        else:
            tokens = math.ceil(len(text) / 4)   # ~4 chars per token

        logger.info("OCR done | id=%s chars=%d tokens=%d", record.id, len(text), tokens)
        if not text.strip():
            text = OCR_EMPTY_PLACEHOLDER
        return ExtractionResult.text(text, tokens)


# ---------------------------------------------------------------------------
# magic-diagram + image/*
# ---------------------------------------------------------------------------

def generated_image_key(user_id: str, original_name: str, timestamp_ms: int, random_hex: str) -> str:
    """generated/{user_id}/{timestamp}-{random}-{basename without extension}.png"""
    stem = Path(original_name).stem or "diagram"
    return f"generated/{user_id}/{timestamp_ms}-{random_hex}-{stem}.png"


def image_mime_type(filename: str) -> str:
    return _IMAGE_MIME_BY_EXTENSION.get(Path(filename).suffix.lower(), "image/png")


class MagicDiagramStrategy(ExtractionStrategy):
    """
    Turns a photographed sketch into a clean diagram.

    The image-edit endpoint takes a file upload, so the original bytes are
    written to a temporary file first. That file is removed in `finally` on
    every exit path.
    """

    needs_object_key = True

    def __init__(
        self,
        storage: ObjectStore,
        image_editor: ImageEditModel,
        temp_dir: str | os.PathLike | None = None,
        clock: Callable[[], float] = time.time,
        token_hex: Callable[[], str] = lambda: secrets.token_hex(4),
    ) -> None:
        self._storage = storage
        self._editor = image_editor
        self._temp_dir = temp_dir
        self._clock = clock
        self._token_hex = token_hex

    @property
    def name(self) -> str:
        return "magic-diagram"

    @property
    def error_prefix(self) -> str:
        return "Error generating diagram"

    async def run(self, record: UploadRecord, object_key: str | None) -> ExtractionResult:
        original_name = record.original_name or Path(object_key or "").name
        source = await self._storage.download(object_key)

        now_ms = int(self._clock() * 1000)
        fd, raw_path = tempfile.mkstemp(
            prefix=f"{now_ms}-",
            suffix=Path(original_name).suffix,
            dir=self._temp_dir,
        )
        temp_path = Path(raw_path)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(source)

            payload = await self._editor.digitize(
                temp_path,
                image_mime_type(original_name),
                MAGIC_DIAGRAM_PROMPT.format(name=original_name),
            )
            if not payload:
                raise RuntimeError("No image data received from image generation model")

            png = base64.b64decode(payload, validate=True)
            key = generated_image_key(record.user_id, original_name, now_ms, self._token_hex())
            await self._storage.upload(key, png, "image/png")
        finally:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Temp file cleanup failed | path=%s: %s", temp_path, exc)

        url = self._storage.public_url(key)
        logger.info("Diagram generated | id=%s key=%s", record.id, key)
        return ExtractionResult.image(url, MAGIC_DIAGRAM_TOKEN_COST)


# ---------------------------------------------------------------------------
# Deterministic strategies
# ---------------------------------------------------------------------------

class PdfPendingStrategy(ExtractionStrategy):

    @property
    def name(self) -> str:
        return "pdf"

    async def run(self, record: UploadRecord, object_key: str | None) -> ExtractionResult:
        logger.warning("PDF processing requested but not implemented | id=%s", record.id)
        return ExtractionResult.failed(PDF_PENDING_ERROR, text_content=PDF_PENDING_PLACEHOLDER)


class PlainTextStrategy(ExtractionStrategy):
    """text/plain and text/markdown are stored verbatim; no AI call, no cost."""

    needs_object_key = True

    def __init__(self, storage: ObjectStore) -> None:
        self._storage = storage

    @property
    def name(self) -> str:
        return "plain-text"

    @property
    def error_prefix(self) -> str:
        return "Error reading text file"

    async def run(self, record: UploadRecord, object_key: str | None) -> ExtractionResult:
        raw = await self._storage.download(object_key)
        return ExtractionResult.text(raw.decode("utf-8", errors="replace"), tokens_used=0)


class UnsupportedStrategy(ExtractionStrategy):

    def __init__(self, file_type: str, process_type: str) -> None:
        self._file_type = file_type
        self._process_type = process_type

    @property
    def name(self) -> str:
        return "unsupported"

    async def run(self, record: UploadRecord, object_key: str | None) -> ExtractionResult:
        logger.warning(
            "Unsupported upload | id=%s file_type=%s process_type=%s",
            record.id, self._file_type, self._process_type,
        )
        return ExtractionResult.failed(
            f"Unsupported file type/processType: {self._file_type} / {self._process_type}",
            text_content=f"[Unsupported: {self._file_type}]",
        )
