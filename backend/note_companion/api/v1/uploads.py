"""
Upload Status API Router

  GET  /api/status/{file_id}           polled by clients until terminal
  POST /api/uploads/{file_id}/retry    move an errored record back to pending

Both are scoped to the authenticated Clerk user: a record owned by someone
else is indistinguishable from a missing one (404).

The status route answers 404 while a freshly created record is not yet
visible; the client poller treats that as "try again".
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from note_companion.auth.dependencies import CurrentUser, UploadStore
from note_companion.schemas.uploads import (
    ErrorResponse,
    RequeueResponse,
    UploadErrors,
    UploadStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Uploads"])


@router.get(
    "/status/{file_id}",
    response_model=UploadStatusResponse,
    summary="Processing status of one upload",
    responses={404: {"model": ErrorResponse, "description": "Unknown upload or not owned by caller"}},
)
async def get_upload_status(file_id: int, user: CurrentUser, store: UploadStore):
    record = await store.get(file_id, user_id=user.user_id)
    if record is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=UploadErrors.upload_not_found(file_id).model_dump(mode="json"),
        )

    return UploadStatusResponse(
        file_id=record.id,
        status=record.status,
        text_content=record.text_content,
        generated_image_url=record.generated_image_url,
        tokens_used=record.tokens_used,
        error=record.error,
        updated_at=record.updated_at,
    )


@router.post(
    "/uploads/{file_id}/retry",
    response_model=RequeueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Requeue an errored upload",
    responses={
        404: {"model": ErrorResponse, "description": "Unknown upload or not owned by caller"},
        409: {"model": ErrorResponse, "description": "Upload is not in error"},
    },
)
async def retry_upload(file_id: int, user: CurrentUser, store: UploadStore):
    if await store.requeue(file_id, user_id=user.user_id):
        logger.info("Retry requested | id=%s user=%s", file_id, user.user_id)
        return RequeueResponse(file_id=file_id)

    record = await store.get(file_id, user_id=user.user_id)
    if record is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=UploadErrors.upload_not_found(file_id).model_dump(mode="json"),
        )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=UploadErrors.not_requeueable(file_id, record.status.value).model_dump(mode="json"),
    )
