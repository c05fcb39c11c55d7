"""End-to-end tests for SurveySession on the simulated platform."""

from __future__ import annotations

import json
import random

import pytest

from conftest import FakeBackend, FakeSurveyClient
from survey_flow.config import load_config
from survey_flow.core.session import EMAIL_PROGRESS, SUBMIT_ERROR, SUBMIT_PROGRESS, SurveySession
from survey_flow.relay.chat_relay import ChatRelay
from survey_flow.types import SurveyFlowError


@pytest.fixture
def client() -> FakeSurveyClient:
    return FakeSurveyClient(participant_id="ID-ABCDEFGHIJKLMNO1019120000000", treatment_group=1)


@pytest.fixture
def make_session(survey_config, platform, store, transport):
    def _make(client=None, config=None) -> SurveySession:
        return SurveySession(
            config or survey_config, platform, store,
            client=client, transport=transport, rng=random.Random(7),
        )
    return _make


async def _started(make_session, client=None, config=None) -> SurveySession:
    session = make_session(client=client, config=config)
    await session.initialize()
    return session


class TestInitialize:
    @pytest.mark.asyncio
    async def test_fetches_identity_and_renders_first_step(self, make_session, client, platform, store):
        session = await _started(make_session, client)
        assert client.metadata_calls == 1
        assert session.identity.participant_id == client.participant_id
        assert store.get("treatmentGroup") == "1"
        assert sorted(session.question_orders["trust"]) == list(range(5))
        assert platform.view.step == 1
        assert platform.view.email_form_visible is True
        assert platform.view.dialogue_finished is False

    @pytest.mark.asyncio
    async def test_stored_identity_is_reused(self, make_session, client, store):
        store.set("participantId", "ID-EXISTING")
        store.set("treatmentGroup", "0")
        session = await _started(make_session, client)
        assert client.metadata_calls == 0
        assert session.identity.treatment_group == 0

    @pytest.mark.asyncio
    async def test_reload_resumes_where_the_participant_left(self, make_session, client, platform):
        session = await _started(make_session, client)
        session.set_consent(True)
        session.answer("q1", "4")
        for _ in range(5):
            session.next()
        session.back()
        session.before_unload()

        platform.history.reload()
        resumed = await _started(make_session, client)
        assert resumed.current == 5
        assert resumed.form.consent is True
        assert resumed.form.answers["q1"] == "4"
        assert platform.history.listener_count == 1

    @pytest.mark.asyncio
    async def test_corrupt_history_restarts_navigation_in_sync(self, make_session, client, platform, store):
        session = await _started(make_session, client)
        session.set_consent(True)
        for _ in range(4):
            session.next()
        assert session.current == 5
        store.set("historyStates", "{not json")
        session.before_unload()

        platform.history.reload()
        resumed = await _started(make_session, client)
        assert resumed.current == 1
        assert [e.step for e in resumed.shadow.entries] == [1]

        resumed.next()
        resumed.next()
        resumed.back()
        assert resumed.current == 2
        assert platform.history.state == {"page": 2}

        platform.history.back()
        assert resumed.current == 1
        assert platform.history.state == {"page": 1}


class TestSubmit:
    async def _at_last_question(self, make_session, client) -> SurveySession:
        session = await _started(make_session, client)
        session.set_consent(True)
        session.answer("q1", "5")
        session.answer("feedback", "fine")
        for _ in range(7):
            session.next()
        assert session.current == 8
        return session

    @pytest.mark.asyncio
    async def test_four_failures_keep_the_step(self, make_session, platform, store, sleep):
        client = FakeSurveyClient(fail_submits=4)
        session = await self._at_last_question(make_session, client)

        assert await session.submit() is False
        assert client.submit_calls == 4
        assert sleep.delays == [0.5, 0.5, 0.5]
        assert session.current == 8
        assert platform.view.notifications[SUBMIT_ERROR] is True
        assert platform.view.notifications[SUBMIT_PROGRESS] is False
        assert store.get("participantId") == client.participant_id
        assert json.loads(store.get("formData"))["q1"] == "5"

    @pytest.mark.asyncio
    async def test_success_after_retries_jumps_to_final(self, make_session, platform, store):
        client = FakeSurveyClient(fail_submits=2)
        session = await self._at_last_question(make_session, client)

        assert await session.submit() is True
        assert session.current == 9
        assert platform.view.terminal is True
        assert platform.view.notifications[SUBMIT_ERROR] is False

        payload = client.submissions[0]
        assert payload["participantId"] == client.participant_id
        assert payload["treatmentGroup"] == 1
        assert payload["conversationLog"] == "[]"
        assert payload["q1"] == "5"
        assert payload["q2"] == ""
        assert payload["feedback"] == "fine"

        assert store.get("participantId") is None
        assert store.get("formData") is None
        assert store.get("currentPage") == "9"

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, make_session):
        client = FakeSurveyClient(fail_submits=4)
        session = await self._at_last_question(make_session, client)
        assert await session.submit() is False
        assert await session.submit() is True
        assert session.current == 9

    @pytest.mark.asyncio
    async def test_without_client_raises(self, make_session):
        session = await _started(make_session)
        with pytest.raises(SurveyFlowError):
            await session.submit()


class TestEmail:
    @pytest.mark.asyncio
    async def test_blank_email_is_ignored(self, make_session, client):
        session = await _started(make_session, client)
        assert await session.submit_email("   ") is False
        assert client.emails == []

    @pytest.mark.asyncio
    async def test_success_swaps_form_for_confirmation(self, make_session, client, platform, store):
        session = await _started(make_session, client)
        assert await session.submit_email(" someone@example.org ") is True
        assert client.emails == ["someone@example.org"]
        assert platform.view.email_form_visible is False
        assert platform.view.email_success_visible is True
        assert platform.view.notifications[EMAIL_PROGRESS] is False
        assert store.get("emailSent") == "true"

    @pytest.mark.asyncio
    async def test_failure_keeps_form(self, make_session, client, platform):
        client.fail_emails = 10
        session = await _started(make_session, client)
        assert await session.submit_email("someone@example.org") is False
        assert platform.view.email_form_visible is True


class TestAgentDialogue:
    @pytest.mark.asyncio
    async def test_finished_dialogue_swaps_affordance(self, make_session, client, platform, store):
        session = await _started(make_session, client)
        session.handle_finished_dialogue()
        assert platform.view.dialogue_finished is True
        assert store.get("dialogueFinished") == "true"

    @pytest.mark.asyncio
    async def test_textarea_replacement_disabled(self, make_session, client, platform):
        config = load_config(config_dict={"survey": {"textarea_replacement": False}})
        session = await _started(make_session, client, config=config)
        session.handle_finished_dialogue()
        assert platform.view.dialogue_finished is False

    @pytest.mark.asyncio
    async def test_open_conversation_polls_into_the_log(self, make_session, client, platform, transport):
        backend = FakeBackend()
        relay = ChatRelay(backend, transport=transport)
        session = await _started(make_session, client)

        poller = await session.open_conversation(relay)
        assert backend.started == [1]

        backend.batches.append({
            "activities": [
                {"id": "conv-1|1", "type": "message", "from": {"id": "bot"}, "text": "Thanks!",
                 "channelData": {"dialogueFinished": True}},
            ],
            "watermark": "1",
        })
        await poller.poll_once()
        assert platform.view.dialogue_finished is True
        assert json.loads(session.conversation.serialized())[0]["text"] == "Thanks!"
