"""StepController: the questionnaire's navigation state machine."""

from __future__ import annotations

import logging
from typing import Callable

from ..types import (
    ConfigError,
    IntentKind,
    NavigationIntent,
    SessionSnapshot,
    StepView,
    SurveyConfig,
)
from .history_shadow import HistoryShadow
from .scroll_memory import ScrollMemory
from .snapshot import write_agent_opened, write_navigation
from .state_store import PersistedStateStore

logger = logging.getLogger(__name__)


class StepController:
    """Owns the current step and decides legal transitions.

    Every committed transition saves the outgoing scroll offset, renders the
    new step, updates the history shadow, and snapshots navigation state.
    """

    def __init__(
        self,
        survey: SurveyConfig,
        shadow: HistoryShadow,
        scroll: ScrollMemory,
        view: StepView,
        store: PersistedStateStore,
        on_agent_session_started: Callable[[], None] | None = None,
    ) -> None:
        if survey.total_steps < 2:
            raise ConfigError(f"total_steps must be >= 2, got {survey.total_steps}")
        if not 1 < survey.agent_step < survey.total_steps:
            raise ConfigError(
                f"agent_step must lie strictly between 1 and {survey.total_steps}, "
                f"got {survey.agent_step}"
            )
        self.total_steps = survey.total_steps
        self.agent_step = survey.agent_step
        self._shadow = shadow
        self._scroll = scroll
        self._view = view
        self._store = store
        self.on_agent_session_started = on_agent_session_started

        self.current = 1
        self._agent_session_started = False
        self._final_jump_done = False

        shadow.bind(current=lambda: self.current, apply=self.apply_external)

    # -- derived state --

    @property
    def progress(self) -> float:
        return (self.current - 1) / (self.total_steps - 1)

    @property
    def terminal(self) -> bool:
        return self.current == self.total_steps

    @property
    def agent_session_started(self) -> bool:
        return self._agent_session_started

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            current_step=self.current,
            history=self._shadow.entries,
            scroll_positions=self._scroll.positions,
            agent_session_started=self._agent_session_started,
        )

    # -- lifecycle --

    def restore(self, snapshot: SessionSnapshot) -> None:
        """Adopt a snapshot read at start-up. Call before ``start()``."""
        self.current = snapshot.current_step
        self._agent_session_started = snapshot.agent_session_started
        self._shadow.restore(snapshot.history)
        self._scroll.load(snapshot.scroll_positions)

    def start(self) -> None:
        """Initialize native history for the current step and render it."""
        self._shadow.initialize(self.current)
        self.arrive_at(self.current)
        self._persist()

    def reset(self) -> None:
        """Externally-triggered restart at step 1 with a clean shadow and scroll map."""
        self.current = 1
        self._agent_session_started = False
        self._final_jump_done = False
        write_agent_opened(self._store, False)
        self._scroll.clear()
        self._shadow.reset(1)
        self.arrive_at(1)
        self._persist()

    # -- transitions --

    def advance(self) -> None:
        if self.current >= self.total_steps:
            return
        self._scroll.save(self.current)
        self.current += 1
        self.arrive_at(self.current)
        self._shadow.record_or_replay(self.current, IntentKind.FORWARD)
        self._persist()

    def retreat(self) -> None:
        # The terminal step is not retreatable through the questionnaire controls.
        if not 1 < self.current < self.total_steps:
            return
        self._scroll.save(self.current)
        self.current -= 1
        self.arrive_at(self.current)
        self._shadow.replay_existing_visit(self.current, IntentKind.BACKWARD)
        self._persist()

    def jump_to_final(self) -> None:
        """Skip to the terminal step after a successful submission. Once per session."""
        if self._final_jump_done or self.current >= self.total_steps:
            return
        self._final_jump_done = True
        self._scroll.save(self.current)
        self.current = self.total_steps
        self.arrive_at(self.current)
        self._shadow.record_or_replay(self.current, IntentKind.FORWARD)
        self._persist()
        logger.info("Moved to final step %d", self.current)

    def apply_external(self, intent: NavigationIntent) -> None:
        """Apply a browser-initiated transition. The native record already exists."""
        if intent.kind == IntentKind.JUMP_TO:
            target = intent.target
        elif intent.kind == IntentKind.BACKWARD:
            target = self.current - 1
        else:
            target = self.current + 1
        if target is None or not 1 <= target <= self.total_steps or target == self.current:
            return
        self._scroll.save(self.current)
        self.current = target
        self.arrive_at(self.current)
        self._persist()

    def arrive_at(self, step: int) -> None:
        """Render ``step``; toggle the agent view and scroll as needed."""
        self._scroll.cancel_pending()
        self._view.show_step(step, terminal=step == self.total_steps)

        if abs(step - self.agent_step) <= 1:
            self._view.set_agent_view(step == self.agent_step)

        if step == self.agent_step and not self._agent_session_started:
            self._agent_session_started = True
            write_agent_opened(self._store, True)
            logger.info("Agent session started at step %d", step)
            if self.on_agent_session_started is not None:
                self.on_agent_session_started()

        self._view.set_progress((step - 1) / (self.total_steps - 1))

        if step != self.agent_step:
            self._scroll.restore(step)

    def _persist(self) -> None:
        write_navigation(self._store, self.current, self._shadow.entries)
