"""
Upload client: sends one shared item to the API and waits for its result.

    text   → POST /api/upload-text  {"text", "name"}         processed at intake
    binary → POST /api/upload       multipart file + processType
             POST /api/trigger-processing                     best effort
    then   → StatusPoller until completed / error / timeout

Network and HTTP failures come back as an error UploadResult rather than an
exception, so the local queue can rotate the item and try again later.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx

from note_companion.client.local_queue import prepare_file
from note_companion.client.models import SharedFile, UploadResult
from note_companion.client.poller import StatusPoller

logger = logging.getLogger(__name__)

UPLOAD_TEXT_PATH = "/api/upload-text"
UPLOAD_FILE_PATH = "/api/upload"
TRIGGER_PATH     = "/api/trigger-processing"

StatusCallback = Callable[[str, "dict[str, Any] | None"], None]


class UploadClient:

    def __init__(self, http: httpx.AsyncClient, poller: StatusPoller | None = None):
        self._http   = http
        self._poller = poller or StatusPoller(http)

    async def process(
        self,
        file: SharedFile,
        token: str,
        on_status: StatusCallback | None = None,
    ) -> UploadResult:
        notify = on_status or (lambda status, details=None: None)
        headers = {"Authorization": f"Bearer {token}"}
        file_name, mime_type = prepare_file(file)

        notify("uploading", None)
        try:
            if file.is_text:
                response = await self._http.post(
                    UPLOAD_TEXT_PATH,
                    json={"text": file.text, "name": file_name},
                    headers=headers,
                )
            else:
                content = file.uri.read_bytes()
                response = await self._http.post(
                    UPLOAD_FILE_PATH,
                    files={"file": (file_name, content, mime_type)},
                    data={"processType": file.process_type},
                    headers=headers,
                )
            response.raise_for_status()
            file_id = response.json().get("fileId")
        except httpx.HTTPStatusError as exc:
            logger.error("Upload rejected | name=%s http=%s", file_name, exc.response.status_code)
            return UploadResult.failure(f"Upload failed with status {exc.response.status_code}")
        except (httpx.HTTPError, OSError, ValueError) as exc:
            logger.error("Upload failed | name=%s error=%s", file_name, exc)
            return UploadResult.failure(f"Upload failed: {exc}")

        if file_id is None:
            return UploadResult.failure("Upload response did not include a fileId")

        logger.info("Uploaded | name=%s file_id=%s text=%s", file_name, file_id, file.is_text)
        notify("processing", {"fileId": file_id})

        if not file.is_text:
            await self._trigger_processing(headers)

        result = await self._poller.poll_until_terminal(file_id, token, is_text_file=file.is_text)
        result = result.model_copy(update={"file_name": file_name, "mime_type": mime_type})
        notify(result.status, {"fileId": file_id})
        return result

    async def _trigger_processing(self, headers: dict[str, str]) -> None:
        # The scheduled cron picks the record up anyway if this call fails.
        try:
            response = await self._http.post(TRIGGER_PATH, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Processing trigger failed | error=%s", exc)
