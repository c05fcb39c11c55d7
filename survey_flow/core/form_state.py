"""Form answers, participant identity, question order, and session flags.

These are plain persistence collaborators of the navigation core: each
class reads its keys once and writes them back on every change.
"""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from .state_store import PersistedStateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_FORM_DATA = "formData"
KEY_PARTICIPANT_ID = "participantId"
KEY_TREATMENT_GROUP = "treatmentGroup"
KEY_CONVERSATION = "conversation"
KEY_DIALOGUE_FINISHED = "dialogueFinished"
KEY_EMAIL_SENT = "emailSent"
RANDOM_ORDER_PREFIX = "randomOrder"

SUBMISSION_KEYS = (KEY_PARTICIPANT_ID, KEY_TREATMENT_GROUP, KEY_FORM_DATA, KEY_CONVERSATION)


def _load_json(store: PersistedStateStore, key: str) -> Any:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unparseable %s", key)
        return None


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------

class FormState:
    """Consent flag plus named answers, persisted as one JSON document."""

    def __init__(
        self,
        store: PersistedStateStore,
        likert_questions: Sequence[str] = (),
        extra_text_fields: Sequence[str] = (),
    ) -> None:
        self._store = store
        self.likert_questions = list(likert_questions)
        self.extra_text_fields = list(extra_text_fields)
        self.consent = False
        self.answers: dict[str, str] = {}

    def restore(self) -> None:
        data = _load_json(self._store, KEY_FORM_DATA)
        if not isinstance(data, dict):
            return
        self.consent = bool(data.get("consent", False))
        self.answers = {
            str(k): str(v) for k, v in data.items()
            if k != "consent" and v is not None
        }

    def set_consent(self, given: bool) -> None:
        self.consent = bool(given)
        self.save()

    def answer(self, name: str, value: str) -> None:
        self.answers[name] = "" if value is None else str(value)
        self.save()

    def save(self) -> None:
        data: dict[str, Any] = {"consent": self.consent}
        data.update(self.collect())
        self._store.set(KEY_FORM_DATA, json.dumps(data, ensure_ascii=False))

    def collect(self) -> dict[str, str]:
        """Every configured field (blank if unanswered) plus any other answers given."""
        fields = {name: self.answers.get(name, "") for name in self.likert_questions}
        fields.update({name: self.answers.get(name, "") for name in self.extra_text_fields})
        for name, value in self.answers.items():
            fields.setdefault(name, value)
        return fields

    def clear(self) -> None:
        self.consent = False
        self.answers = {}
        self._store.remove(KEY_FORM_DATA)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@dataclass
class Identity:
    participant_id: str
    treatment_group: int


def _coerce_group(value: Any) -> int | None:
    try:
        group = int(value)
    except (TypeError, ValueError):
        return None
    return group if group in (0, 1) else None


async def ensure_identity(
    store: PersistedStateStore,
    fetch: Callable[[], Awaitable[dict]],
    rng: random.Random | None = None,
) -> Identity:
    """Reuse the stored participant identity, fetching one only if incomplete.

    A treatment group outside {0, 1} is replaced by a fair coin flip.
    """
    rng = rng or random.Random()
    participant_id = store.get(KEY_PARTICIPANT_ID)
    group_raw: Any = store.get(KEY_TREATMENT_GROUP)

    if not participant_id or group_raw is None:
        fetched = await fetch()
        participant_id = participant_id or fetched.get("participantId")
        if group_raw is None:
            group_raw = fetched.get("treatmentGroup")

    group = _coerce_group(group_raw)
    if group is None:
        group = 0 if rng.random() < 0.5 else 1
        logger.warning("Invalid treatment group %r; assigned %d at random", group_raw, group)

    identity = Identity(participant_id=str(participant_id or ""), treatment_group=group)
    store.set(KEY_PARTICIPANT_ID, identity.participant_id)
    store.set(KEY_TREATMENT_GROUP, str(identity.treatment_group))
    return identity


def load_identity(store: PersistedStateStore) -> Identity | None:
    participant_id = store.get(KEY_PARTICIPANT_ID)
    group = _coerce_group(store.get(KEY_TREATMENT_GROUP))
    if not participant_id or group is None:
        return None
    return Identity(participant_id=participant_id, treatment_group=group)


# ---------------------------------------------------------------------------
# Randomized question order
# ---------------------------------------------------------------------------

class QuestionOrder:
    """A random permutation per question set, stable for the whole session."""

    def __init__(self, store: PersistedStateStore, rng: random.Random | None = None) -> None:
        self._store = store
        self._rng = rng or random.Random()

    def order(self, set_name: str, count: int) -> list[int]:
        key = RANDOM_ORDER_PREFIX + set_name
        stored = _load_json(self._store, key)
        if isinstance(stored, list) and sorted(stored) == list(range(count)):
            return stored
        order = list(range(count))
        self._rng.shuffle(order)
        self._store.set(key, json.dumps(order))
        return order

    def arrange(self, set_name: str, items: Sequence[T]) -> list[T]:
        return [items[i] for i in self.order(set_name, len(items))]


# ---------------------------------------------------------------------------
# Session flags and conversation log
# ---------------------------------------------------------------------------

class SessionFlags:
    """Boolean flags stored as "true"/"false" strings."""

    def __init__(self, store: PersistedStateStore) -> None:
        self._store = store

    def _get(self, key: str) -> bool:
        return self._store.get(key) == "true"

    def _set(self, key: str, value: bool) -> None:
        self._store.set(key, "true" if value else "false")

    @property
    def dialogue_finished(self) -> bool:
        return self._get(KEY_DIALOGUE_FINISHED)

    @dialogue_finished.setter
    def dialogue_finished(self, value: bool) -> None:
        self._set(KEY_DIALOGUE_FINISHED, value)

    @property
    def email_sent(self) -> bool:
        return self._get(KEY_EMAIL_SENT)

    @email_sent.setter
    def email_sent(self, value: bool) -> None:
        self._set(KEY_EMAIL_SENT, value)


class ConversationLog:
    """Chat transcript kept alongside the answers and submitted with them."""

    def __init__(self, store: PersistedStateStore) -> None:
        self._store = store

    def entries(self) -> list[dict]:
        data = _load_json(self._store, KEY_CONVERSATION)
        return data if isinstance(data, list) else []

    def append(self, activities: Sequence[dict]) -> None:
        messages = [
            {
                "id": a.get("id"),
                "from": (a.get("from") or {}).get("id"),
                "text": a.get("text", ""),
                "timestamp": a.get("timestamp"),
            }
            for a in activities
            if isinstance(a, dict) and a.get("type") == "message"
        ]
        if not messages:
            return
        log = self.entries()
        known = {m.get("id") for m in log if m.get("id")}
        log.extend(m for m in messages if not m["id"] or m["id"] not in known)
        self._store.set(KEY_CONVERSATION, json.dumps(log, ensure_ascii=False))

    def serialized(self) -> str:
        return self._store.get(KEY_CONVERSATION) or "[]"


def clear_submission_state(store: PersistedStateStore) -> None:
    """Forget identity, answers, and transcript after a successful submission."""
    for key in SUBMISSION_KEYS:
        store.remove(key)
