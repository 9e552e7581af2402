"""
Status poller: waits for a server-side upload record to reach a terminal state.

    sleep(initial_delay)
    repeat up to max_attempts:
        GET /api/status/{id}
          404 / non-2xx         → count attempt, sleep, retry
          completed | error     → return
          pending | processing  → count attempt, sleep, retry
          transport/parse error → count attempt; give up at max, else sleep
    → "Timed out waiting for processing results"

Text uploads are processed synchronously at intake, so for them a single
status read is made with no initial delay.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from note_companion.client.models import UploadResult

logger = logging.getLogger(__name__)

STATUS_PATH           = "/api/status/{file_id}"
INITIAL_DELAY_SECONDS = 2.0
POLL_INTERVAL_SECONDS = 3.0
MAX_POLL_ATTEMPTS     = 30

TERMINAL = frozenset({"completed", "error"})


class StatusPoller:

    def __init__(
        self,
        http: httpx.AsyncClient,
        initial_delay: float = INITIAL_DELAY_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        status_path: str = STATUS_PATH,
    ):
        self._http          = http
        self._initial_delay = initial_delay
        self._poll_interval = poll_interval
        self._max_attempts  = max_attempts
        self._sleep         = sleep
        self._status_path   = status_path

    async def _get_status(self, file_id: str, token: str) -> httpx.Response:
        return await self._http.get(
            self._status_path.format(file_id=file_id),
            headers={"Authorization": f"Bearer {token}"},
        )

    @staticmethod
    def _json_object(response: httpx.Response) -> dict[str, Any]:
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        return data

    @staticmethod
    def _result(data: dict[str, Any], file_id: str) -> UploadResult:
        return UploadResult.model_validate({**data, "fileId": file_id})

    async def poll_until_terminal(
        self,
        file_id: str | int,
        token: str,
        is_text_file: bool = False,
    ) -> UploadResult:
        file_id = str(file_id)

        if is_text_file:
            try:
                response = await self._get_status(file_id, token)
                response.raise_for_status()
                data = self._json_object(response)
                data.setdefault("status", "completed")
                return self._result(data, file_id)
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("Text file status fetch failed | file_id=%s error=%s", file_id, exc)
                return UploadResult.failure("Failed to get final details for text file", file_id)

        await self._sleep(self._initial_delay)

        attempts = 0
        while attempts < self._max_attempts:
            if attempts:
                await self._sleep(self._poll_interval)
            attempts += 1
            try:
                response = await self._get_status(file_id, token)
                if not response.is_success:
                    logger.debug(
                        "Status not available yet | file_id=%s http=%s attempt=%s",
                        file_id, response.status_code, attempts,
                    )
                    continue

                data = self._json_object(response)
                if data.get("status") in TERMINAL:
                    return self._result(data, file_id)

            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "Status poll failed | file_id=%s attempt=%s error=%s",
                    file_id, attempts, exc,
                )
                if attempts >= self._max_attempts:
                    return UploadResult.failure("Max polling attempts reached after error", file_id)

        logger.warning("Polling timed out | file_id=%s attempts=%s", file_id, attempts)
        return UploadResult.failure("Timed out waiting for processing results", file_id)
