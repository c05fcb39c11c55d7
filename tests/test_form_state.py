"""Tests for form answers, identity, question order, flags, and the conversation log."""

from __future__ import annotations

import json
import random

import pytest

from survey_flow.core.form_state import (
    ConversationLog,
    FormState,
    QuestionOrder,
    SessionFlags,
    clear_submission_state,
    ensure_identity,
    load_identity,
)
from survey_flow.core.state_store import MemoryStateStore


class TestFormState:
    def test_collect_includes_unanswered_fields(self):
        form = FormState(MemoryStateStore(), likert_questions=["q1", "q2"], extra_text_fields=["feedback"])
        form.answer("q1", "5")
        form.answer("age", "34")
        assert form.collect() == {"q1": "5", "q2": "", "feedback": "", "age": "34"}

    def test_answers_and_consent_survive_restore(self):
        store = MemoryStateStore()
        form = FormState(store, likert_questions=["q1"])
        form.set_consent(True)
        form.answer("q1", "3")

        again = FormState(store, likert_questions=["q1"])
        again.restore()
        assert again.consent is True
        assert again.answers == {"q1": "3"}

    def test_corrupt_form_data_is_ignored(self):
        store = MemoryStateStore({"formData": "not json"})
        form = FormState(store)
        form.restore()
        assert form.consent is False
        assert form.answers == {}

    def test_clear(self):
        store = MemoryStateStore()
        form = FormState(store)
        form.set_consent(True)
        form.clear()
        assert form.consent is False
        assert store.get("formData") is None


class TestIdentity:
    @pytest.mark.asyncio
    async def test_fetches_when_missing(self):
        store = MemoryStateStore()
        calls = []

        async def fetch():
            calls.append(True)
            return {"participantId": "ID-ABC", "treatmentGroup": 0}

        identity = await ensure_identity(store, fetch)
        assert identity.participant_id == "ID-ABC"
        assert identity.treatment_group == 0
        assert store.get("participantId") == "ID-ABC"
        assert store.get("treatmentGroup") == "0"
        assert calls == [True]

    @pytest.mark.asyncio
    async def test_reuses_stored_identity(self):
        store = MemoryStateStore({"participantId": "ID-OLD", "treatmentGroup": "1"})

        async def fetch():
            raise AssertionError("should not fetch")

        identity = await ensure_identity(store, fetch)
        assert identity.participant_id == "ID-OLD"
        assert identity.treatment_group == 1

    @pytest.mark.asyncio
    async def test_invalid_group_is_randomized(self):
        store = MemoryStateStore()

        async def fetch():
            return {"participantId": "ID-X", "treatmentGroup": 7}

        identity = await ensure_identity(store, fetch, rng=random.Random(3))
        assert identity.treatment_group in (0, 1)
        assert store.get("treatmentGroup") == str(identity.treatment_group)

    def test_load_identity_requires_both_values(self):
        assert load_identity(MemoryStateStore({"participantId": "ID-X"})) is None
        assert load_identity(MemoryStateStore({"participantId": "ID-X", "treatmentGroup": "1"})).treatment_group == 1


class TestQuestionOrder:
    def test_order_is_stable_within_session(self):
        store = MemoryStateStore()
        first = QuestionOrder(store, random.Random(1)).order("trust", 6)
        second = QuestionOrder(store, random.Random(99)).order("trust", 6)
        assert first == second
        assert sorted(first) == list(range(6))
        assert json.loads(store.get("randomOrdertrust")) == first

    def test_mismatched_stored_order_is_regenerated(self):
        store = MemoryStateStore({"randomOrdertrust": json.dumps([0, 1, 2])})
        order = QuestionOrder(store, random.Random(1)).order("trust", 5)
        assert sorted(order) == list(range(5))

    def test_arrange(self):
        order = QuestionOrder(MemoryStateStore(), random.Random(5))
        items = ["a", "b", "c", "d"]
        arranged = order.arrange("letters", items)
        assert sorted(arranged) == items
        assert arranged == order.arrange("letters", items)


class TestFlagsAndLog:
    def test_flags_default_false(self):
        flags = SessionFlags(MemoryStateStore())
        assert flags.dialogue_finished is False
        assert flags.email_sent is False

    def test_flags_persist_as_strings(self):
        store = MemoryStateStore()
        flags = SessionFlags(store)
        flags.dialogue_finished = True
        assert store.get("dialogueFinished") == "true"
        assert SessionFlags(store).dialogue_finished is True

    def test_log_keeps_messages_once(self):
        store = MemoryStateStore()
        log = ConversationLog(store)
        assert log.serialized() == "[]"
        activities = [
            {"id": "c|1", "type": "message", "from": {"id": "user1"}, "text": "hi"},
            {"id": "c|2", "type": "typing", "from": {"id": "bot"}},
            {"id": "c|3", "type": "message", "from": {"id": "bot"}, "text": "hello"},
        ]
        log.append(activities)
        log.append(activities[:1])
        assert [m["id"] for m in log.entries()] == ["c|1", "c|3"]
        assert log.entries()[1]["from"] == "bot"

    def test_clear_submission_state_keeps_navigation(self):
        store = MemoryStateStore({
            "participantId": "ID-X",
            "treatmentGroup": "1",
            "formData": "{}",
            "conversation": "[]",
            "currentPage": "9",
        })
        clear_submission_state(store)
        assert store.keys() == ["currentPage"]
