"""ScrollMemory: per-step vertical offsets, restored after the step has laid out."""

from __future__ import annotations

import logging

from ..types import Scheduler, Viewport
from .scheduler import ScheduledTask, after_layout
from .snapshot import write_scroll_positions
from .state_store import PersistedStateStore

logger = logging.getLogger(__name__)


class ScrollMemory:
    """Records and restores document scroll offsets keyed by step.

    The agent step scrolls inside its own widget, so it is never recorded.
    """

    def __init__(
        self,
        viewport: Viewport,
        scheduler: Scheduler,
        store: PersistedStateStore,
        agent_step: int,
        settle_delay: float = 0.05,
    ) -> None:
        self._viewport = viewport
        self._scheduler = scheduler
        self._store = store
        self.agent_step = agent_step
        self.settle_delay = settle_delay
        self._positions: dict[int, float] = {}
        self._pending: ScheduledTask | None = None

    @property
    def positions(self) -> dict[int, float]:
        return dict(self._positions)

    @property
    def pending(self) -> ScheduledTask | None:
        if self._pending is not None and self._pending.pending:
            return self._pending
        return None

    def load(self, positions: dict[int, float]) -> None:
        self._positions = {k: v for k, v in positions.items() if k != self.agent_step}

    def save(self, step: int) -> None:
        if step == self.agent_step:
            return
        self._positions[step] = self._viewport.scroll_y
        write_scroll_positions(self._store, self._positions)

    def restore(self, step: int) -> None:
        """Scroll to the saved offset for ``step``, or to the top if none is saved."""
        self.cancel_pending()
        offset = self._positions.get(step)
        if offset is None:
            self._viewport.scroll_to(0)
            return

        def _scroll() -> None:
            self._viewport.scroll_to(offset, smooth=True)

        self._pending = after_layout(self._scheduler, _scroll, settle_delay=self.settle_delay)

    def cancel_pending(self) -> None:
        if self._pending is not None:
            if self._pending.pending:
                logger.debug("Cancelled queued scroll restoration")
            self._pending.cancel()
            self._pending = None

    def clear(self) -> None:
        self.cancel_pending()
        self._positions = {}
        write_scroll_positions(self._store, self._positions)
