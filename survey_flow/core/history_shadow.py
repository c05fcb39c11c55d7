"""HistoryShadow: a local mirror of native history that resolves navigation direction.

Native back/forward notifications carry only the destination state, never a
direction. The shadow stack records each step once, in first-visit order, and
the destination step is compared against the controller's current step to
turn a notification into a ``NavigationIntent``.

Navigations the shadow triggers itself (replaying an existing visit, or
steering the user back into a valid state) also produce a notification. A
one-shot suppression flag is set synchronously right before such a
navigation and consumed by the very next notification.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..types import BrowserHistory, HistoryEntry, IntentKind, NavigationIntent

logger = logging.getLogger(__name__)


class HistoryShadow:
    def __init__(
        self,
        history: BrowserHistory,
        total_steps: int,
        consent_given: Callable[[], bool] | None = None,
    ) -> None:
        self._history = history
        self.total_steps = total_steps
        self._consent_given = consent_given or (lambda: True)
        self._entries: list[HistoryEntry] = []
        self._suppress_next = False
        self._attached = False
        self._current: Callable[[], int] | None = None
        self._apply: Callable[[NavigationIntent], None] | None = None

    # -- wiring --

    def bind(
        self,
        current: Callable[[], int],
        apply: Callable[[NavigationIntent], None],
    ) -> None:
        """Connect to the controller: a read accessor and a transition sink."""
        self._current = current
        self._apply = apply

    @property
    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    @property
    def attached(self) -> bool:
        return self._attached

    @property
    def suppressing(self) -> bool:
        return self._suppress_next

    def contains(self, step: int) -> bool:
        return any(e.step == step for e in self._entries)

    def restore(self, entries: list[HistoryEntry]) -> None:
        """Load a persisted shadow stack, keeping the first entry per step."""
        self._entries = []
        for entry in entries:
            if not self.contains(entry.step):
                self._entries.append(entry)

    def initialize(self, current_step: int) -> None:
        """Overwrite the current native record with ``current_step`` and start listening.

        Covers both a fresh load and a reload mid-session: the native record
        is replaced, never pushed.
        """
        entry = HistoryEntry(current_step)
        if not self.contains(current_step):
            self._entries.append(entry)
        self._history.replace_state(entry.to_state())
        self.attach()

    def attach(self) -> None:
        if self._attached:
            return
        self._history.add_listener(self.on_external_navigation)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self._history.remove_listener(self.on_external_navigation)
        self._attached = False

    def reset(self, step: int = 1) -> None:
        """Forget every visit and start over at ``step``."""
        self._entries = []
        self._suppress_next = False
        self.initialize(step)

    # -- transitions driven by the controller --

    def record_first_visit(self, step: int) -> bool:
        """Push a native record for a step never seen before. Returns True if pushed."""
        if self.contains(step):
            return False
        entry = HistoryEntry(step)
        self._entries.append(entry)
        self._history.push_state(entry.to_state())
        return True

    def replay_existing_visit(self, step: int, kind: IntentKind) -> bool:
        """Move the native cursor one position for an already-visited step.

        Returns False (and does nothing) if ``step`` has not been visited.
        """
        if not self.contains(step):
            return False
        self._navigate_silently(kind)
        return True

    def record_or_replay(self, step: int, kind: IntentKind) -> None:
        if not self.record_first_visit(step):
            self.replay_existing_visit(step, kind)

    def _navigate_silently(self, kind: IntentKind) -> None:
        # Flag first, then navigate: no suspension point in between.
        self._suppress_next = True
        if kind == IntentKind.BACKWARD:
            self._history.back()
        else:
            self._history.forward()

    # -- notifications from the platform --

    def on_external_navigation(self, state: Any) -> None:
        """Handle a native back/forward notification carrying the destination state."""
        if self._suppress_next:
            self._suppress_next = False
            logger.debug("Swallowed self-triggered navigation to %r", state)
            return

        destination = HistoryEntry.from_state(state)
        if destination is None:
            logger.debug("Ignoring navigation to foreign history state %r", state)
            return
        if self._current is None or self._apply is None:
            logger.debug("HistoryShadow not bound; ignoring navigation to %r", state)
            return

        current = self._current()

        # Progress past the first step needs explicit consent, not a browser button.
        if current == 1 and destination.step == 2 and not self._consent_given():
            logger.debug("Consent missing; steering history back to step 1")
            self._navigate_silently(IntentKind.BACKWARD)
            return

        # Once terminal, browser controls never move the step again.
        if current == self.total_steps:
            logger.debug("Terminal step reached; detaching history listener")
            self.detach()
            self._history.back()
            return

        if destination.step < current:
            self._apply(NavigationIntent.backward())
        elif destination.step > current:
            self._apply(NavigationIntent.forward())
        else:
            logger.debug("Navigation to current step %d ignored", current)
