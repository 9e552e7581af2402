"""
Batch Worker — Upload Processing Loop

Invoked from outside on a fixed interval (cron → GET /api/process-pending-uploads,
or the note-companion-process-uploads console script). One invocation:

  1. Fetch up to BATCH_SIZE records in pending/processing, oldest first.
     Nothing claimable → idle summary, no writes.
  2. For each record, sequentially:
       a. Claim   — status → processing unless already processing
                    (a record left in processing by a dead run is resumed)
       b. Extract — ContentExtractor.extract(), never raises
       c. Commit  — status, text_content, generated_image_url, tokens_used, error
       d. Meter   — completed + tokens_used > 0 → UsageMeteringService.increment;
                    failure logged, the record stays completed
       e. Anything escaping a–d → best-effort status=error
                    ("Processing Loop Error: …"); if that write fails too,
                    log it and move on
  3. Return BatchSummary(attempted, succeeded, failed).

Only a failure of step 1 propagates to the caller (→ HTTP 500). Records are
processed one at a time; at-least-once is the contract, overlapping runs are
tolerated through the idempotent claim.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from note_companion.db.uploads_repo import UploadRecord, UploadRecordStore
from note_companion.processing.strategies import ExtractionResult
from note_companion.schemas.uploads import UploadStatus

logger = logging.getLogger(__name__)

# Records per invocation; bounds the run against the platform's execution ceiling
BATCH_SIZE = 10

IDLE_MESSAGE = "No pending files"


class Extractor(Protocol):
    async def extract(self, record: UploadRecord) -> ExtractionResult: ...


class UsageMeter(Protocol):
    async def increment(self, user_id: str, tokens: int) -> None: ...


@dataclass(frozen=True)
class BatchSummary:
    attempted: int = 0
    succeeded: int = 0
    failed:    int = 0

    @property
    def idle(self) -> bool:
        return self.attempted == 0

    @property
    def message(self) -> str:
        if self.idle:
            return IDLE_MESSAGE
        return (
            f"Processing complete. Attempted: {self.attempted}, "
            f"Succeeded: {self.succeeded}, Errors: {self.failed}"
        )


class BatchWorker:
    """
    Stateless orchestrator for one processing pass.

    All collaborators are injected; one instance can serve many runs.
    """

    def __init__(
        self,
        store: UploadRecordStore,
        extractor: Extractor,
        meter: UsageMeter,
        batch_size: int = BATCH_SIZE,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._meter = meter
        self._batch_size = batch_size

    async def run_once(self) -> BatchSummary:
        start = time.perf_counter()

        # Not guarded: a store outage here is the one failure the caller sees
        records = await self._store.fetch_claimable(self._batch_size)
        if not records:
            logger.info("Batch idle | no pending files")
            return BatchSummary()

        logger.info("Batch start | records=%d", len(records))
        succeeded = failed = 0
        for record in records:
            status = await self._process_record(record)
            if status == UploadStatus.COMPLETED:
                succeeded += 1
            else:
                failed += 1

        summary = BatchSummary(attempted=len(records), succeeded=succeeded, failed=failed)
        logger.info(
            "Batch done | attempted=%d succeeded=%d failed=%d elapsed_ms=%.0f",
            summary.attempted, summary.succeeded, summary.failed,
            (time.perf_counter() - start) * 1000,
        )
        return summary

    # ------------------------------------------------------------------
    # Per-record protocol
    # ------------------------------------------------------------------

    async def _process_record(self, record: UploadRecord) -> UploadStatus:
        try:
            if record.status != UploadStatus.PROCESSING:
                await self._store.claim(record.id)
            else:
                logger.info("Resuming stuck record | id=%s", record.id)

            result = await self._extractor.extract(record)
            await self._store.commit_result(record.id, result)
            logger.info(
                "Record committed | id=%s status=%s tokens=%d error=%s",
                record.id, result.status.value, result.tokens_used, result.error,
            )

            if result.is_completed and result.tokens_used > 0:
                await self._meter_usage(record, result.tokens_used)
            return result.status

        except Exception as exc:
            logger.exception("Processing loop error | id=%s", record.id)
            await self._mark_failed(record.id, f"Processing Loop Error: {exc}")
            return UploadStatus.ERROR

    async def _meter_usage(self, record: UploadRecord, tokens: int) -> None:
        try:
            await self._meter.increment(record.user_id, tokens)
        except Exception as exc:
            # Non-fatal: the record's own completion stands
            logger.error(
                "Usage metering failed (non-fatal) | id=%s user=%s tokens=%d: %s",
                record.id, record.user_id, tokens, exc,
            )

    async def _mark_failed(self, record_id: int, message: str) -> None:
        try:
            await self._store.mark_error(record_id, message)
        except Exception as exc:
            logger.error("Fallback error write failed | id=%s: %s", record_id, exc)
