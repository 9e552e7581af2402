"""
Upload Processing — Pydantic Schemas and Pipeline Enums

Covers:
  - The upload state machine and processing-type enums shared by the
    store, the extractor and the worker
  - GET  /api/status/{file_id}            (polled by clients)
  - POST /api/uploads/{file_id}/retry     (manual requeue)
  - GET  /api/process-pending-uploads     (cron trigger summary)
  - POST /api/trigger-processing          (user-initiated trigger)
  - Structured error bodies for every route

Wire format is camelCase (textContent, generatedImageUrl, tokensUsed …) so the
mobile and web clients can consume it unchanged; Python code uses snake_case.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Processing pipeline state machine
# ---------------------------------------------------------------------------

class UploadStatus(str, Enum):
    """
    Maps to uploaded_files.status.
    Transitions: pending → processing → completed | error
    """
    PENDING     = "pending"      # created by intake, waiting for a batch run
    PROCESSING  = "processing"   # claimed; also what a crashed run leaves behind
    COMPLETED   = "completed"
    ERROR       = "error"        # not reclaimed automatically; see requeue


# Statuses the batch worker selects. A record in ERROR only comes back
# through an explicit requeue.
CLAIMABLE_STATUSES: tuple[UploadStatus, ...] = (UploadStatus.PENDING, UploadStatus.PROCESSING)


class ProcessType(str, Enum):
    STANDARD_OCR  = "standard-ocr"
    MAGIC_DIAGRAM = "magic-diagram"


DEFAULT_PROCESS_TYPE = ProcessType.STANDARD_OCR


class CamelModel(BaseModel):
    """Base for every JSON body exchanged with the clients."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Status lookup: GET /api/status/{file_id}
# ---------------------------------------------------------------------------

class UploadStatusResponse(CamelModel):
    """Polled by clients until status is completed or error."""
    file_id:             int                = Field(..., description="Upload record id")
    status:              UploadStatus
    text_content:        str | None         = Field(None, description="Extracted text or a placeholder message")
    generated_image_url: str | None         = Field(None, description="Set only for magic-diagram uploads")
    tokens_used:         int                = Field(0, ge=0)
    error:               str | None         = None
    updated_at:          datetime | None    = None


class RequeueResponse(CamelModel):
    """Returned after an errored record has been moved back to pending."""
    file_id: int
    status:  UploadStatus = UploadStatus.PENDING
    message: str = "Upload requeued for processing."


# ---------------------------------------------------------------------------
# Worker trigger responses
# ---------------------------------------------------------------------------

class WorkerRunResponse(CamelModel):
    """Body of GET /api/process-pending-uploads."""
    message:   str = Field(..., description="Human-readable run summary")
    attempted: int = 0
    succeeded: int = 0
    failed:    int = 0


class TriggerResponse(CamelModel):
    """
    Body of POST /api/trigger-processing.
    success is True whenever the caller was authenticated; a worker failure
    is reported in message/details instead of as an HTTP error.
    """
    success: bool
    message: str
    details: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str         = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


# ---------------------------------------------------------------------------
# Pre-defined error factories (keeps route handlers thin)
# ---------------------------------------------------------------------------

class UploadErrors:
    """Factories for every documented error case."""

    @staticmethod
    def upload_not_found(file_id: int) -> ErrorResponse:
        return ErrorResponse(
            error_code="UPLOAD_NOT_FOUND",
            message=f"Upload '{file_id}' was not found.",
        )

    @staticmethod
    def not_requeueable(file_id: int, current_status: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="NOT_REQUEUEABLE",
            message=f"Upload '{file_id}' is '{current_status}'; only errored uploads can be retried.",
        )

    @staticmethod
    def batch_failed(detail: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="BATCH_FETCH_FAILED",
            message="Background processing job failed",
            details=[ErrorDetail(field=None, message=detail, code="BATCH_FETCH_FAILED")],
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            details=[],
            request_id=request_id,
        )
