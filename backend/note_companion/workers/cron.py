"""
Worker wiring and the one-shot console entry point.

build_batch_worker() assembles a BatchWorker from settings; the HTTP trigger
routes and the CLI both use it.

    $ note-companion-process-uploads
    2025-01-01 12:00:00 INFO note_companion.workers.batch Batch done | attempted=3 ...

Exit status is 0 on a completed pass (even if individual records errored) and
1 if the batch could not be fetched.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from note_companion.core.config import Settings, settings
from note_companion.db.uploads_repo import SqlAlchemyUploadRecordStore
from note_companion.llm.vision import LangChainVisionOcr, OpenAIImageEditor
from note_companion.observability.usage import UsageMeteringService
from note_companion.processing.extractor import ContentExtractor
from note_companion.storage.r2 import R2Config, R2StorageService
from note_companion.workers.batch import BatchSummary, BatchWorker

logger = logging.getLogger(__name__)


def build_batch_worker(
    session_factory: async_sessionmaker[AsyncSession],
    cfg: Settings = settings,
) -> BatchWorker:
    extractor = ContentExtractor(
        storage=R2StorageService(R2Config.from_settings(cfg)),
        ocr=LangChainVisionOcr.from_settings(cfg),
        image_editor=OpenAIImageEditor.from_settings(cfg),
    )
    return BatchWorker(
        store=SqlAlchemyUploadRecordStore(session_factory),
        extractor=extractor,
        meter=UsageMeteringService(session_factory),
    )


async def run_batch() -> BatchSummary:
    from note_companion.db.session import AsyncSessionLocal, engine

    try:
        return await build_batch_worker(AsyncSessionLocal).run_once()
    finally:
        await engine.dispose()


def main() -> int:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        summary = asyncio.run(run_batch())
    except Exception:
        logger.exception("Background processing job failed")
        return 1

    logger.info(summary.message)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
