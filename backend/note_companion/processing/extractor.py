"""
Content Extractor — Strategy Dispatch
══════════════════════════════════════

Selects an extraction strategy from the record's (processType, fileType)
pair and runs it. The public entry point never raises: whatever happens
inside a strategy comes back as a well-formed ExtractionResult, so the batch
worker always has something to commit.

Dispatch table (first match wins)
─────────────────────────────────
  magic-diagram  + image/*                  → MagicDiagramStrategy
  standard-ocr   + image/*                  → StandardOcrStrategy
  any            + type containing "pdf"    → PdfPendingStrategy
  any            + text/plain|text/markdown → PlainTextStrategy
  anything else                             → UnsupportedStrategy

A missing processType means standard-ocr. fileType is compared lowercased.

Object key resolution
─────────────────────
Strategies that read raw bytes need an R2 key. Records created before the
key column existed only carry the public URL; the key is the path from the
"uploads" segment onward:

    https://files.example.com/uploads/user_1/note.txt  →  uploads/user_1/note.txt
"""

from __future__ import annotations

import logging
import os

from note_companion.db.uploads_repo import UploadRecord
from note_companion.llm.errors import classify_provider_error
from note_companion.llm.vision import ImageEditModel, VisionOcrModel
from note_companion.processing.strategies import (
    TEXT_FILE_TYPES,
    ExtractionResult,
    ExtractionStrategy,
    MagicDiagramStrategy,
    ObjectStore,
    PdfPendingStrategy,
    PlainTextStrategy,
    StandardOcrStrategy,
    UnsupportedStrategy,
)
from note_companion.schemas.uploads import DEFAULT_PROCESS_TYPE, ProcessType

logger = logging.getLogger(__name__)

UPLOADS_SEGMENT = "uploads"


class ObjectKeyDerivationError(ValueError):
    """Neither an object key nor a parseable public URL is available."""


def derive_object_key(record: UploadRecord) -> str:
    """Return the record's R2 key, deriving it from public_url when absent."""
    if record.object_key:
        return record.object_key

    if record.public_url:
        parts = record.public_url.split("/")
        if UPLOADS_SEGMENT in parts:
            key = "/".join(parts[parts.index(UPLOADS_SEGMENT):])
            if key != UPLOADS_SEGMENT:
                return key

    raise ObjectKeyDerivationError(
        f"Could not determine object key from public URL: {record.public_url}"
    )


class ContentExtractor:
    """
    Stateless orchestrator over the extraction strategies.

    All collaborators are injected so tests can pass fakes:

        extractor = ContentExtractor(
            storage=R2StorageService(R2Config.from_settings()),
            ocr=LangChainVisionOcr.from_settings(),
            image_editor=OpenAIImageEditor.from_settings(),
        )
        result = await extractor.extract(record)
    """

    def __init__(
        self,
        storage: ObjectStore,
        ocr: VisionOcrModel,
        image_editor: ImageEditModel,
        temp_dir: str | os.PathLike | None = None,
    ) -> None:
        self._ocr_strategy = StandardOcrStrategy(ocr)
        self._diagram_strategy = MagicDiagramStrategy(storage, image_editor, temp_dir=temp_dir)
        self._pdf_strategy = PdfPendingStrategy()
        self._text_strategy = PlainTextStrategy(storage)

    def select_strategy(self, process_type: str | None, file_type: str | None) -> ExtractionStrategy:
        process_type = process_type or DEFAULT_PROCESS_TYPE.value
        file_type = (file_type or "").lower()

        if file_type.startswith("image/"):
            if process_type == ProcessType.MAGIC_DIAGRAM.value:
                return self._diagram_strategy
            if process_type == ProcessType.STANDARD_OCR.value:
                return self._ocr_strategy
        if "pdf" in file_type:
            return self._pdf_strategy
        if file_type in TEXT_FILE_TYPES:
            return self._text_strategy
        return UnsupportedStrategy(file_type, process_type)

    async def extract(self, record: UploadRecord) -> ExtractionResult:
        """Run the matching strategy. Never raises for a failed extraction."""
        strategy = self.select_strategy(record.process_type, record.file_type)
        logger.info(
            "Extracting | id=%s strategy=%s file_type=%s",
            record.id, strategy.name, record.file_type,
        )

        object_key: str | None = None
        if strategy.needs_object_key:
            try:
                object_key = derive_object_key(record)
            except ObjectKeyDerivationError as exc:
                logger.error("Key derivation failed | id=%s: %s", record.id, exc)
                return ExtractionResult.failed(str(exc))

        try:
            return await strategy.run(record, object_key)
        except Exception as exc:
            failure = classify_provider_error(exc)
            message = f"{strategy.error_prefix}: {failure.message}"
            logger.error(
                "Extraction failed | id=%s strategy=%s kind=%s: %s",
                record.id, strategy.name, failure.kind.value, failure.message,
            )
            return ExtractionResult.failed(message)
