"""ActivityPoller: drives ChatRelay.poll at a fixed cadence while the agent view is open."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..core.form_state import ConversationLog
from ..types import ActivityBatch, RelayError, TransportError
from .chat_relay import ChatRelay

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0


class ActivityPoller:
    """Owns the watermark for one conversation.

    The watermark only ever advances from a successful response; a failed
    poll is logged and retried on the next tick with the old watermark.
    """

    def __init__(
        self,
        relay: ChatRelay,
        conversation_id: str,
        interval: float = POLL_INTERVAL,
        on_activities: Callable[[list[dict]], None] | None = None,
        on_finished: Callable[[], None] | None = None,
        log: ConversationLog | None = None,
        watermark: str | None = None,
    ) -> None:
        self._relay = relay
        self.conversation_id = conversation_id
        self.interval = interval
        self.on_activities = on_activities
        self.on_finished = on_finished
        self._log = log
        self._watermark = watermark
        self._finished_signalled = False
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.failures = 0

    @property
    def watermark(self) -> str | None:
        return self._watermark

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> ActivityBatch | None:
        try:
            batch = await self._relay.poll(self.conversation_id, self._watermark)
        except (TransportError, RelayError) as e:
            self.failures += 1
            logger.warning("Polling %s failed (watermark=%s): %s", self.conversation_id, self._watermark, e)
            return None

        self._watermark = batch.watermark
        if batch.activities:
            if self._log is not None:
                self._log.append(batch.activities)
            if self.on_activities is not None:
                self.on_activities(batch.activities)
        if batch.finished and not self._finished_signalled:
            self._finished_signalled = True
            if self.on_finished is not None:
                self.on_finished()
        return batch

    async def run(self) -> None:
        self._stop.clear()
        while not self._stop.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                self.failures += 1
                logger.error("Activity callback for %s failed: %s", self.conversation_id, e, exc_info=True)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self.run())

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
