"""Background driver that drains the LocalQueue one item at a time."""

from __future__ import annotations

import asyncio
import logging

from note_companion.client.local_queue import LocalQueue

logger = logging.getLogger(__name__)

SYNC_DELAY_SECONDS = 5.0


class BackgroundSync:
    """
    Drains one queued item per pass and schedules the next pass after
    ``delay`` seconds while items remain. At most one pass runs at a time;
    a call made while a pass is in flight is a no-op.
    """

    def __init__(self, queue: LocalQueue, delay: float = SYNC_DELAY_SECONDS):
        self._queue     = queue
        self._delay     = delay
        self._in_flight = False
        self._stopped   = False
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def process_next(self, token: str) -> bool:
        """Run one pass. Returns True when another pass was scheduled."""
        if self._in_flight:
            return False

        self._in_flight = True
        try:
            has_more = await self._queue.drain_one(token)
        except Exception:
            logger.exception("Background sync pass failed")
            return False
        finally:
            self._in_flight = False

        if has_more and not self._stopped:
            self._cancel_timer()
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._delay, self._spawn, token)
            return True
        return False

    def _spawn(self, token: str) -> None:
        self._timer = None
        self._task = asyncio.ensure_future(self.process_next(token))

    def start(self, token: str) -> asyncio.Task:
        self._cancel_timer()
        self._stopped = False
        self._task = asyncio.ensure_future(self.process_next(token))
        return self._task

    def stop(self) -> None:
        self._stopped = True
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
