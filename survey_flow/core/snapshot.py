"""Typed read/write of the navigation snapshot over a PersistedStateStore."""

from __future__ import annotations

import json
import logging

from ..types import HistoryEntry, SessionSnapshot
from .state_store import PersistedStateStore

logger = logging.getLogger(__name__)

KEY_CURRENT_PAGE = "currentPage"
KEY_HISTORY_STATES = "historyStates"
KEY_SCROLL_POSITIONS = "scrollPositions"
KEY_AGENT_OPENED = "chatbotAlreadyOpened"


def _load_json(store: PersistedStateStore, key: str):
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unparseable %s: %r", key, raw[:200])
        return None


def read_current_step(store: PersistedStateStore, total_steps: int) -> int:
    raw = store.get(KEY_CURRENT_PAGE)
    if raw is None:
        return 1
    try:
        step = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s: %r", KEY_CURRENT_PAGE, raw)
        return 1
    if not 1 <= step <= total_steps:
        logger.warning("Ignoring out-of-range %s: %d", KEY_CURRENT_PAGE, step)
        return 1
    return step


def read_history(store: PersistedStateStore, total_steps: int) -> list[HistoryEntry]:
    """Restore the shadow stack, dropping malformed and duplicate entries."""
    raw = _load_json(store, KEY_HISTORY_STATES)
    if not isinstance(raw, list):
        return []
    entries: list[HistoryEntry] = []
    seen: set[int] = set()
    for item in raw:
        entry = HistoryEntry.from_state(item)
        if entry is None or not 1 <= entry.step <= total_steps or entry.step in seen:
            continue
        seen.add(entry.step)
        entries.append(entry)
    return entries


def read_scroll_positions(store: PersistedStateStore) -> dict[int, float]:
    raw = _load_json(store, KEY_SCROLL_POSITIONS)
    if not isinstance(raw, dict):
        return {}
    positions: dict[int, float] = {}
    for k, v in raw.items():
        try:
            positions[int(k)] = float(v)
        except (TypeError, ValueError):
            continue
    return positions


def _navigation_consistent(current_step: int, history: list[HistoryEntry], total_steps: int) -> bool:
    """Every step the controls can retreat through needs a shadow entry."""
    steps = {e.step for e in history}
    if current_step not in steps:
        return False
    if current_step == total_steps:
        return True
    return steps.issuperset(range(1, current_step + 1))


def read_snapshot(store: PersistedStateStore, total_steps: int) -> SessionSnapshot:
    """Read everything once at start-up. Missing or invalid values fall back to defaults.

    ``currentPage`` and ``historyStates`` are restored together or not at all.
    """
    current_step = read_current_step(store, total_steps)
    history = read_history(store, total_steps)
    fresh = current_step == 1 and not history
    if not fresh and not _navigation_consistent(current_step, history, total_steps):
        logger.warning(
            "Discarding inconsistent navigation state: step %d, history %s",
            current_step, [e.step for e in history],
        )
        current_step, history = 1, []
    return SessionSnapshot(
        current_step=current_step,
        history=history,
        scroll_positions=read_scroll_positions(store),
        agent_session_started=store.get(KEY_AGENT_OPENED) == "true",
    )


def write_navigation(store: PersistedStateStore, current_step: int, history: list[HistoryEntry]) -> None:
    store.set(KEY_CURRENT_PAGE, str(current_step))
    store.set(KEY_HISTORY_STATES, json.dumps([e.to_state() for e in history]))


def write_scroll_positions(store: PersistedStateStore, positions: dict[int, float]) -> None:
    store.set(KEY_SCROLL_POSITIONS, json.dumps({str(k): v for k, v in positions.items()}))


def write_agent_opened(store: PersistedStateStore, opened: bool) -> None:
    store.set(KEY_AGENT_OPENED, "true" if opened else "false")


def write_snapshot(store: PersistedStateStore, snapshot: SessionSnapshot) -> None:
    write_navigation(store, snapshot.current_step, snapshot.history)
    write_scroll_positions(store, snapshot.scroll_positions)
    write_agent_opened(store, snapshot.agent_session_started)
