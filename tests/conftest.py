"""Shared fixtures for survey-flow tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import pytest

from survey_flow.config import load_config
from survey_flow.core.history_shadow import HistoryShadow
from survey_flow.core.scroll_memory import ScrollMemory
from survey_flow.core.state_store import MemoryStateStore
from survey_flow.core.step_controller import StepController
from survey_flow.platform import Platform
from survey_flow.relay.transport import RetryableTransport
from survey_flow.types import SurveyFlowConfig, TransportError


class _Handle:
    def __init__(self, callback: Callable[[], None], due: float = 0.0) -> None:
        self.callback = callback
        self.due = due
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Frame and timer queues that only advance when the test says so."""

    def __init__(self) -> None:
        self.now = 0.0
        self._frames: list[_Handle] = []
        self._timers: list[_Handle] = []

    @property
    def idle(self) -> bool:
        return not any(not h.cancelled for h in self._frames + self._timers)

    def next_frame(self, callback):
        handle = _Handle(callback)
        self._frames.append(handle)
        return handle

    def call_later(self, delay, callback):
        handle = _Handle(callback, due=self.now + delay)
        self._timers.append(handle)
        return handle

    def run_frames(self, count: int = 1) -> None:
        for _ in range(count):
            frame, self._frames = self._frames, []
            for handle in frame:
                if not handle.cancelled:
                    handle.callback()

    def advance_time(self, seconds: float) -> None:
        self.now += seconds
        due = sorted((h for h in self._timers if h.due <= self.now), key=lambda h: h.due)
        self._timers = [h for h in self._timers if h.due > self.now]
        for handle in due:
            if not handle.cancelled:
                handle.callback()

    def flush(self) -> None:
        """Run frames and timers until nothing is queued."""
        for _ in range(100):
            if self.idle:
                return
            self.run_frames()
            self.advance_time(1.0)


class FakeBackend:
    """ConversationBackend with scripted failures and batches."""

    def __init__(self) -> None:
        self.started: list[int | None] = []
        self.posts: list[tuple[str, str, str, int | None]] = []
        self.polls: list[tuple[str, str | None]] = []
        self.batches: list[dict] = []
        self.fail_posts = 0
        self.fail_polls = 0

    async def start_conversation(self, treatment_group=None):
        self.started.append(treatment_group)
        return {"conversationId": f"conv-{len(self.started)}", "token": "tok"}

    async def get_activities(self, conversation_id, watermark=None, treatment_group=None):
        self.polls.append((conversation_id, watermark))
        if self.fail_polls:
            self.fail_polls -= 1
            raise TransportError("upstream down", operation="get_activities", status_code=502)
        if self.batches:
            return self.batches.pop(0)
        return {"activities": [], "watermark": watermark}

    async def post_message(self, conversation_id, text, client_message_id, treatment_group=None):
        self.posts.append((conversation_id, text, client_message_id, treatment_group))
        if self.fail_posts:
            self.fail_posts -= 1
            raise TransportError("upstream down", operation="send_message", status_code=503)
        return {"id": f"{conversation_id}|{len(self.posts):07d}"}


class FakeSurveyClient:
    """Stands in for SurveyClient; fails the first N submissions."""

    def __init__(self, participant_id: str = "ID-TEST", treatment_group=1, fail_submits: int = 0) -> None:
        self.participant_id = participant_id
        self.treatment_group = treatment_group
        self.fail_submits = fail_submits
        self.metadata_calls = 0
        self.submissions: list[dict] = []
        self.submit_calls = 0
        self.emails: list[str] = []
        self.fail_emails = 0

    async def generate_survey_data(self):
        self.metadata_calls += 1
        return {"participantId": self.participant_id, "treatmentGroup": self.treatment_group}

    async def submit(self, payload):
        self.submit_calls += 1
        if self.fail_submits:
            self.fail_submits -= 1
            raise TransportError("HTTP 500", operation="submit", status_code=500)
        self.submissions.append(dict(payload))

    async def submit_email(self, email):
        if self.fail_emails:
            self.fail_emails -= 1
            raise TransportError("HTTP 500", operation="submit_email", status_code=500)
        self.emails.append(email)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def survey_config() -> SurveyFlowConfig:
    return load_config(config_dict={
        "survey": {
            "total_steps": 9,
            "agent_step": 4,
            "likert_questions": ["q1", "q2"],
            "extra_text_fields": ["feedback"],
            "question_sets": {"trust": 5},
        },
        "storage": {"backend": "memory"},
    })


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def platform(scheduler) -> Platform:
    return Platform.simulated(scheduler)


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def transport(sleep) -> RetryableTransport:
    return RetryableTransport(retry_delay=0.5, sleep=sleep)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@dataclass
class Harness:
    controller: StepController
    shadow: HistoryShadow
    scroll: ScrollMemory
    consent: dict

    def give_consent(self) -> None:
        self.consent["given"] = True


@pytest.fixture
def make_harness(survey_config, platform, store):
    """Build a StepController wired to the simulated platform."""

    def _make(consent: bool = True, start: bool = True, snapshot=None, on_agent=None) -> Harness:
        consent_state = {"given": consent}
        shadow = HistoryShadow(
            platform.history,
            survey_config.survey.total_steps,
            consent_given=lambda: consent_state["given"],
        )
        scroll = ScrollMemory(
            platform.viewport, platform.scheduler, store, agent_step=survey_config.survey.agent_step,
        )
        controller = StepController(
            survey_config.survey, shadow, scroll, platform.view, store,
            on_agent_session_started=on_agent,
        )
        if snapshot is not None:
            controller.restore(snapshot)
        if start:
            controller.start()
        return Harness(controller, shadow, scroll, consent_state)

    return _make
