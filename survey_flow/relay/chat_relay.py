"""ChatRelay: idempotent sends and watermark polling against a conversation backend."""

from __future__ import annotations

import asyncio
import logging

from ..types import (
    ActivityBatch,
    ConversationBackend,
    ConversationState,
    OutboundMessageKey,
    RelayError,
)
from .dedup import DedupTable
from .transport import RetryableTransport

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 60 * 60


def is_dialogue_finished(activity: dict) -> bool:
    """True if the backend marks this activity as the end of the dialogue."""
    channel_data = activity.get("channelData") or {}
    if isinstance(channel_data, dict) and channel_data.get("dialogueFinished") is True:
        return True
    return activity.get("type") == "event" and activity.get("name") == "dialogueFinished"


class ChatRelay:
    """Relays user messages to a backend and polls for inbound activities.

    Each conversation moves IDLE -> ACTIVE -> FINISHED. The relay never
    loops on its own: callers decide when to poll and persist the watermark
    they get back.
    """

    def __init__(
        self,
        backend: ConversationBackend,
        transport: RetryableTransport | None = None,
        dedup: DedupTable | None = None,
        send_attempts: int = 3,
        poll_attempts: int = 1,
        sweep_interval: float = SWEEP_INTERVAL,
    ) -> None:
        self._backend = backend
        self._transport = transport if transport is not None else RetryableTransport()
        self.dedup = dedup if dedup is not None else DedupTable()
        self.send_attempts = send_attempts
        self.poll_attempts = poll_attempts
        self.sweep_interval = sweep_interval
        self._states: dict[str, ConversationState] = {}
        self._groups: dict[str, int | None] = {}
        self._inflight: dict[OutboundMessageKey, asyncio.Future] = {}
        self._sweeper: asyncio.Task | None = None

    # -- conversation state --

    def state(self, conversation_id: str) -> ConversationState:
        return self._states.get(conversation_id, ConversationState.IDLE)

    def treatment_group(self, conversation_id: str) -> int | None:
        return self._groups.get(conversation_id)

    def adopt(self, conversation_id: str, treatment_group: int | None = None) -> None:
        """Treat a conversation started elsewhere (e.g. before a restart) as active."""
        if self.state(conversation_id) == ConversationState.IDLE:
            self._states[conversation_id] = ConversationState.ACTIVE
        if treatment_group is not None:
            self._groups[conversation_id] = treatment_group

    def mark_finished(self, conversation_id: str) -> None:
        if self._states.get(conversation_id) != ConversationState.FINISHED:
            logger.info("Conversation %s finished", conversation_id)
        self._states[conversation_id] = ConversationState.FINISHED

    async def start_conversation(self, treatment_group: int | None = None) -> dict:
        """Open a conversation on the backend. Returns the backend payload."""
        data = await self._transport.execute(
            lambda: self._backend.start_conversation(treatment_group),
            self.send_attempts,
            name="start_conversation",
        )
        conversation_id = data.get("conversationId") if isinstance(data, dict) else None
        if not conversation_id:
            raise RelayError(f"Backend did not return a conversationId: {data!r}")
        self._states[conversation_id] = ConversationState.ACTIVE
        self._groups[conversation_id] = treatment_group
        logger.info("Conversation %s started (treatment group %s)", conversation_id, treatment_group)
        return data

    # -- outbound --

    def is_duplicate(self, conversation_id: str, client_message_id: str) -> bool:
        return OutboundMessageKey(conversation_id, client_message_id) in self.dedup

    async def send(self, conversation_id: str, text: str, client_message_id: str) -> str:
        """Send a user message at most once per key. Returns the server message id."""
        key = OutboundMessageKey(conversation_id, client_message_id)
        entry = self.dedup.get(key)
        if entry is not None:
            logger.debug("Duplicate send %s/%s suppressed", conversation_id, client_message_id)
            return entry.server_message_id

        task = self._inflight.get(key)
        if task is None:
            self.adopt(conversation_id)
            task = asyncio.ensure_future(self._deliver(key, text))
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._finish_inflight(key, t))
        return await asyncio.shield(task)

    async def _deliver(self, key: OutboundMessageKey, text: str) -> str:
        data = await self._transport.execute(
            lambda: self._backend.post_message(
                key.conversation_id,
                text,
                key.client_message_id,
                treatment_group=self._groups.get(key.conversation_id),
            ),
            self.send_attempts,
            name="send_message",
        )
        server_id = data.get("id") if isinstance(data, dict) else None
        if not server_id:
            raise RelayError(f"Backend did not return a message id: {data!r}")
        self.dedup.record(key, server_id)
        return server_id

    def _finish_inflight(self, key: OutboundMessageKey, task: asyncio.Future) -> None:
        self._inflight.pop(key, None)
        if not task.cancelled():
            task.exception()  # retrieved here so an abandoned failure is not reported twice

    # -- inbound --

    async def poll(self, conversation_id: str, watermark: str | None = None) -> ActivityBatch:
        """Fetch activities after ``watermark``. Failures propagate; nothing is mutated."""
        data = await self._transport.execute(
            lambda: self._backend.get_activities(
                conversation_id, watermark, treatment_group=self._groups.get(conversation_id),
            ),
            self.poll_attempts,
            name="poll",
        )
        if not isinstance(data, dict):
            raise RelayError(f"Unexpected activity payload: {data!r}")
        activities = list(data.get("activities") or [])
        finished = any(is_dialogue_finished(a) for a in activities if isinstance(a, dict))
        self.adopt(conversation_id)
        if finished:
            self.mark_finished(conversation_id)
        return ActivityBatch(
            activities=activities,
            watermark=data.get("watermark", watermark),
            finished=finished,
        )

    # -- garbage collection --

    def sweep(self, now: float | None = None) -> int:
        removed = self.dedup.sweep(now)
        if removed:
            logger.info("Swept %d expired dedup entries", removed)
        return removed

    def start_sweeper(self) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.ensure_future(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()
