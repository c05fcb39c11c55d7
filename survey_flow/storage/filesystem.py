"""FilesystemStateStore: one JSON document per session."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path

from ..core.state_store import PersistedStateStore

logger = logging.getLogger(__name__)

_SAFE_ID_RE = re.compile(r"[^A-Za-z0-9_.-]")


class FilesystemStateStore(PersistedStateStore):
    """Stores a session's keys in ``{root}/{session_id}.json``.

    Every write rewrites the whole document through a temp file + rename,
    so a crash mid-write leaves the previous version intact.
    """

    def __init__(self, root: str | Path, session_id: str) -> None:
        self.root = Path(root)
        self.session_id = session_id
        self.root.mkdir(parents=True, exist_ok=True)
        self.path = self.root / f"{_SAFE_ID_RE.sub('_', session_id)}.json"
        self._data = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Discarding unreadable session file %s: %s", self.path, e)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _flush(self) -> None:
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(self._data, indent=2, ensure_ascii=False))
        os.replace(tmp, self.path)

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)
        self._flush()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()

    def keys(self) -> list[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data = {}
        self._flush()
