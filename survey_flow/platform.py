"""Headless platform: simulated native history, viewport, and view.

These stand in for a browser so that a SurveySession can be driven from
tests and from the ``walk`` CLI command.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from .types import BrowserHistory, Scheduler, StepView, Viewport


class SimulatedHistory:
    """Native history stack with a cursor. Notifications are dispatched synchronously."""

    def __init__(self) -> None:
        self.records: list[Any] = [None]  # the page's own initial record
        self.index = 0
        self._listeners: list[Callable[[Any], None]] = []

    @property
    def length(self) -> int:
        return len(self.records)

    @property
    def state(self) -> Any:
        return self.records[self.index]

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def push_state(self, state: dict) -> None:
        # Pushing discards any forward records, as browsers do.
        del self.records[self.index + 1:]
        self.records.append(dict(state))
        self.index += 1

    def replace_state(self, state: dict) -> None:
        self.records[self.index] = dict(state)

    def back(self) -> None:
        if self.index == 0:
            return
        self.index -= 1
        self._dispatch()

    def forward(self) -> None:
        if self.index >= len(self.records) - 1:
            return
        self.index += 1
        self._dispatch()

    def add_listener(self, listener: Callable[[Any], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[Any], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reload(self) -> None:
        """Page reload: records survive, listeners do not."""
        self._listeners.clear()

    def _dispatch(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            listener(state)


class SimulatedViewport:
    """Document-level vertical scroll position."""

    def __init__(self, scroll_y: float = 0.0) -> None:
        self._scroll_y = scroll_y
        self.scroll_calls: list[tuple[float, bool]] = []

    @property
    def scroll_y(self) -> float:
        return self._scroll_y

    def user_scroll(self, top: float) -> None:
        self._scroll_y = top

    def scroll_to(self, top: float, smooth: bool = False) -> None:
        self._scroll_y = top
        self.scroll_calls.append((top, smooth))


@dataclass
class HeadlessView:
    """StepView that records what a browser would display."""

    step: int = 0
    terminal: bool = False
    progress: float = 0.0
    agent_visible: bool = False
    dialogue_finished: bool = False
    email_form_visible: bool = False
    email_success_visible: bool = False
    notifications: dict[str, bool] = field(default_factory=dict)
    events: list[tuple[str, Any]] = field(default_factory=list)

    def show_step(self, step: int, terminal: bool) -> None:
        self.step = step
        self.terminal = terminal
        self.events.append(("show_step", step))

    def set_progress(self, ratio: float) -> None:
        self.progress = ratio

    def set_agent_view(self, visible: bool) -> None:
        self.agent_visible = visible
        self.events.append(("agent_view", visible))

    def toggle_notification(self, name: str, visible: bool) -> None:
        self.notifications[name] = visible
        self.events.append(("notification", (name, visible)))

    def set_dialogue_finished(self, finished: bool) -> None:
        self.dialogue_finished = finished

    def set_thankyou_state(self, email_collection: bool, email_sent: bool) -> None:
        self.email_form_visible = email_collection and not email_sent
        self.email_success_visible = email_collection and email_sent


@dataclass
class Platform:
    """The capabilities a SurveySession needs from its host."""

    history: BrowserHistory
    viewport: Viewport
    view: StepView
    scheduler: Scheduler

    @classmethod
    def simulated(cls, scheduler: Scheduler) -> Platform:
        return cls(
            history=SimulatedHistory(),
            viewport=SimulatedViewport(),
            view=HeadlessView(),
            scheduler=scheduler,
        )
