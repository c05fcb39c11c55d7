"""All dataclasses, Protocols, enums, and exceptions for survey-flow."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HistoryEntry:
    """One visited step, mirrored into a native history record."""
    step: int

    def to_state(self) -> dict:
        return {"page": self.step}

    @classmethod
    def from_state(cls, state: Any) -> HistoryEntry | None:
        """Parse a native history state object. None when it carries no step."""
        if not isinstance(state, dict):
            return None
        page = state.get("page")
        if isinstance(page, bool) or not isinstance(page, int):
            return None
        return cls(step=page)


class IntentKind(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"
    JUMP_TO = "jump_to"


@dataclass(frozen=True)
class NavigationIntent:
    """A requested transition. Transient, never persisted."""
    kind: IntentKind
    target: int | None = None  # only for JUMP_TO

    @classmethod
    def forward(cls) -> NavigationIntent:
        return cls(IntentKind.FORWARD)

    @classmethod
    def backward(cls) -> NavigationIntent:
        return cls(IntentKind.BACKWARD)

    @classmethod
    def jump_to(cls, step: int) -> NavigationIntent:
        return cls(IntentKind.JUMP_TO, target=step)


@dataclass
class SessionSnapshot:
    """Durable projection of navigation state, re-read after a reload."""
    current_step: int = 1
    history: list[HistoryEntry] = field(default_factory=list)
    scroll_positions: dict[int, float] = field(default_factory=dict)
    agent_session_started: bool = False


# ---------------------------------------------------------------------------
# Chat relay
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OutboundMessageKey:
    """Identifies one logical user message across send attempts."""
    conversation_id: str
    client_message_id: str


@dataclass
class DedupEntry:
    key: OutboundMessageKey
    server_message_id: str
    inserted_at: float


class ConversationState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    FINISHED = "finished"


@dataclass
class ActivityBatch:
    """Result of one poll: new activities plus the backend's next watermark."""
    activities: list[dict] = field(default_factory=list)
    watermark: str | None = None
    finished: bool = False


@runtime_checkable
class ConversationBackend(Protocol):
    """Anything that can start, poll, and post to a conversation."""

    async def start_conversation(self, treatment_group: int | None = None) -> dict: ...

    async def get_activities(
        self,
        conversation_id: str,
        watermark: str | None = None,
        treatment_group: int | None = None,
    ) -> dict: ...

    async def post_message(
        self,
        conversation_id: str,
        text: str,
        client_message_id: str,
        treatment_group: int | None = None,
    ) -> dict: ...


# ---------------------------------------------------------------------------
# Platform capabilities
# ---------------------------------------------------------------------------

class TaskHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Frame and timer scheduling, e.g. an event loop or a test clock."""

    def next_frame(self, callback: Callable[[], None]) -> TaskHandle: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TaskHandle: ...


class BrowserHistory(Protocol):
    """Native history stack. Listeners receive the destination state object."""

    def push_state(self, state: dict) -> None: ...

    def replace_state(self, state: dict) -> None: ...

    def back(self) -> None: ...

    def forward(self) -> None: ...

    def add_listener(self, listener: Callable[[Any], None]) -> None: ...

    def remove_listener(self, listener: Callable[[Any], None]) -> None: ...


class Viewport(Protocol):
    @property
    def scroll_y(self) -> float: ...

    def scroll_to(self, top: float, smooth: bool = False) -> None: ...


class StepView(Protocol):
    """Rendering surface for the questionnaire and the agent widget."""

    def show_step(self, step: int, terminal: bool) -> None: ...

    def set_progress(self, ratio: float) -> None: ...

    def set_agent_view(self, visible: bool) -> None: ...

    def toggle_notification(self, name: str, visible: bool) -> None: ...

    def set_dialogue_finished(self, finished: bool) -> None: ...

    def set_thankyou_state(self, email_collection: bool, email_sent: bool) -> None: ...


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class SurveyFlowError(Exception):
    """Base class for survey-flow errors."""


class TransportError(SurveyFlowError):
    def __init__(
        self,
        message: str,
        operation: str = "",
        status_code: int | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.attempts = attempts


class RelayError(SurveyFlowError):
    """Backend answered, but not in the shape the relay expects."""


class ConfigError(SurveyFlowError):
    pass


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class SurveyConfig:
    total_steps: int = 9
    agent_step: int = 4
    email_collection: bool = True
    textarea_replacement: bool = True
    likert_questions: list[str] = field(default_factory=list)
    extra_text_fields: list[str] = field(default_factory=list)
    question_sets: dict[str, int] = field(default_factory=dict)  # set name -> question count


@dataclass
class TransportConfig:
    retry_delay_s: float = 0.5
    submit_attempts: int = 4
    send_attempts: int = 3
    poll_attempts: int = 1
    metadata_attempts: int = 3


@dataclass
class ScrollConfig:
    settle_delay_s: float = 0.05
    frame_interval_s: float = 1 / 60


@dataclass
class RelayConfig:
    direct_line_base: str = "https://europe.directline.botframework.com/v3/directline"
    direct_line_secret: str = field(default_factory=lambda: os.environ.get("DIRECT_LINE_SECRET", ""))
    user_id: str = "user1"
    bot_id: str = "Test_Chatbot_1"
    dedup_retention_s: float = 3600.0
    sweep_interval_s: float = 3600.0
    poll_interval_s: float = 1.0
    timeout_s: float = 30.0


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000
    base_url: str = "http://127.0.0.1:3000"
    random_treatment: bool = True
    treatment_fallback: int = 1
    database_path: str = ".survey-flow/responses.db"


@dataclass
class StorageConfig:
    backend: str = "filesystem"  # "memory", "filesystem", or "sqlite"
    root: str = ".survey-flow/sessions"
    sqlite_path: str = ".survey-flow/sessions.db"


@dataclass
class SurveyFlowConfig:
    version: str = "1.0"
    survey: SurveyConfig = field(default_factory=SurveyConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    scroll: ScrollConfig = field(default_factory=ScrollConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
