"""SurveySession: wires the navigation core, form state, and relay for one tab."""

from __future__ import annotations

import logging
import random
from typing import Callable

from ..platform import Platform
from ..relay.chat_relay import ChatRelay
from ..relay.poller import ActivityPoller
from ..relay.transport import RetryableTransport
from ..types import SurveyFlowConfig, SurveyFlowError
from .form_state import (
    ConversationLog,
    FormState,
    Identity,
    QuestionOrder,
    SessionFlags,
    clear_submission_state,
    ensure_identity,
    load_identity,
)
from .history_shadow import HistoryShadow
from .scroll_memory import ScrollMemory
from .snapshot import read_snapshot
from .state_store import PersistedStateStore
from .step_controller import StepController

logger = logging.getLogger(__name__)

SUBMIT_PROGRESS = "submit-data-notification"
SUBMIT_ERROR = "submit-error-message"
EMAIL_PROGRESS = "submit-email-notification"
EMAIL_ERROR = "submit-email-error-message"


class SurveySession:
    """Everything one questionnaire tab needs, built from config and a platform.

    ``client`` is any object with ``generate_survey_data``, ``submit`` and
    ``submit_email`` coroutines (normally a ``SurveyClient``).
    """

    def __init__(
        self,
        config: SurveyFlowConfig,
        platform: Platform,
        store: PersistedStateStore,
        client=None,
        transport: RetryableTransport | None = None,
        rng: random.Random | None = None,
        on_agent_session_started: Callable[[], None] | None = None,
    ) -> None:
        self.config = config
        self.platform = platform
        self.store = store
        self._client = client
        self._rng = rng or random.Random()
        survey = config.survey

        self.form = FormState(store, survey.likert_questions, survey.extra_text_fields)
        self.flags = SessionFlags(store)
        self.conversation = ConversationLog(store)
        self.question_order = QuestionOrder(store, self._rng)
        self.question_orders: dict[str, list[int]] = {}
        self.identity: Identity | None = None

        self.shadow = HistoryShadow(
            platform.history, survey.total_steps, consent_given=lambda: self.form.consent,
        )
        self.scroll = ScrollMemory(
            platform.viewport,
            platform.scheduler,
            store,
            agent_step=survey.agent_step,
            settle_delay=config.scroll.settle_delay_s,
        )
        self.controller = StepController(
            survey,
            self.shadow,
            self.scroll,
            platform.view,
            store,
            on_agent_session_started=on_agent_session_started,
        )
        self.transport = transport if transport is not None else RetryableTransport(config.transport.retry_delay_s)

    @property
    def current(self) -> int:
        return self.controller.current

    # -- start-up --

    async def initialize(self) -> None:
        """Identity, question order, restored state, history, first render."""
        if self._client is not None:
            self.identity = await ensure_identity(
                self.store,
                lambda: self.transport.execute(
                    self._client.generate_survey_data,
                    self.config.transport.metadata_attempts,
                    name="metadata",
                ),
                rng=self._rng,
            )
        else:
            self.identity = load_identity(self.store)

        for name, count in self.config.survey.question_sets.items():
            self.question_orders[name] = self.question_order.order(name, count)

        self.form.restore()
        self.controller.restore(read_snapshot(self.store, self.config.survey.total_steps))
        self._apply_dialogue_state()
        self._apply_thankyou_state()
        self.controller.start()

    # -- questionnaire controls --

    def next(self) -> None:
        self.controller.advance()

    def back(self) -> None:
        self.controller.retreat()

    def open_chatbot(self) -> None:
        self.controller.advance()

    def close_chatbot(self) -> None:
        self.controller.retreat()

    def continue_survey(self) -> None:
        self.controller.advance()

    def set_consent(self, given: bool) -> None:
        self.form.set_consent(given)

    def answer(self, name: str, value: str) -> None:
        self.form.answer(name, value)

    def before_unload(self) -> None:
        self.scroll.save(self.controller.current)

    # -- agent widget --

    def handle_finished_dialogue(self) -> None:
        self.flags.dialogue_finished = True
        self._apply_dialogue_state()

    def _apply_dialogue_state(self) -> None:
        finished = self.config.survey.textarea_replacement and self.flags.dialogue_finished
        self.platform.view.set_dialogue_finished(finished)

    def _apply_thankyou_state(self) -> None:
        self.platform.view.set_thankyou_state(
            self.config.survey.email_collection, self.flags.email_sent,
        )

    async def open_conversation(self, relay: ChatRelay) -> ActivityPoller:
        """Start a conversation for this participant and return an unstarted poller."""
        group = self.identity.treatment_group if self.identity else None
        data = await relay.start_conversation(group)
        return ActivityPoller(
            relay,
            data["conversationId"],
            interval=self.config.relay.poll_interval_s,
            on_finished=self.handle_finished_dialogue,
            log=self.conversation,
        )

    # -- submission --

    def collect_submission(self) -> dict:
        identity = load_identity(self.store) or self.identity
        data = {
            "participantId": identity.participant_id if identity else None,
            "treatmentGroup": identity.treatment_group if identity else None,
            "conversationLog": self.conversation.serialized(),
        }
        data.update(self.form.collect())
        return data

    async def submit(self) -> bool:
        """Submit the answers. On success jump to the final step; on failure stay put."""
        client = self._require_client()
        view = self.platform.view
        view.toggle_notification(SUBMIT_ERROR, False)
        view.toggle_notification(SUBMIT_PROGRESS, True)
        payload = self.collect_submission()
        try:
            await self.transport.execute(
                lambda: client.submit(payload),
                self.config.transport.submit_attempts,
                name="submit",
            )
        except SurveyFlowError as e:
            logger.error("Submission failed: %s", e)
            view.toggle_notification(SUBMIT_PROGRESS, False)
            view.toggle_notification(SUBMIT_ERROR, True)
            return False

        view.toggle_notification(SUBMIT_PROGRESS, False)
        self.controller.jump_to_final()
        clear_submission_state(self.store)
        self.form.clear()
        return True

    async def submit_email(self, email: str) -> bool:
        email = (email or "").strip()
        if not email:
            return False
        client = self._require_client()
        view = self.platform.view
        view.toggle_notification(EMAIL_ERROR, False)
        view.toggle_notification(EMAIL_PROGRESS, True)
        try:
            await self.transport.execute(
                lambda: client.submit_email(email),
                self.config.transport.submit_attempts,
                name="submit_email",
            )
        except SurveyFlowError as e:
            logger.error("E-mail submission failed: %s", e)
            view.toggle_notification(EMAIL_PROGRESS, False)
            view.toggle_notification(EMAIL_ERROR, True)
            return False

        view.toggle_notification(EMAIL_PROGRESS, False)
        self.flags.email_sent = True
        self._apply_thankyou_state()
        return True

    def _require_client(self):
        if self._client is None:
            raise SurveyFlowError("SurveySession has no client; cannot reach the server")
        return self._client
