"""DedupTable: remembers which outbound messages already reached the backend."""

from __future__ import annotations

import time
from typing import Callable

from ..types import DedupEntry, OutboundMessageKey

RETENTION = 60 * 60  # one hour


class DedupTable:
    """In-memory map from OutboundMessageKey to the server-assigned message id.

    Same key is assumed to mean same content; text is never compared.
    """

    def __init__(
        self,
        retention: float = RETENTION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retention = retention
        self._clock = clock
        self._entries: dict[OutboundMessageKey, DedupEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: OutboundMessageKey) -> bool:
        return key in self._entries

    def get(self, key: OutboundMessageKey) -> DedupEntry | None:
        return self._entries.get(key)

    def record(self, key: OutboundMessageKey, server_message_id: str) -> DedupEntry:
        entry = DedupEntry(key=key, server_message_id=server_message_id, inserted_at=self._clock())
        self._entries[key] = entry
        return entry

    def sweep(self, now: float | None = None) -> int:
        """Drop entries older than the retention window. Returns how many were removed."""
        now = self._clock() if now is None else now
        expired = [k for k, e in self._entries.items() if now - e.inserted_at > self.retention]
        for key in expired:
            del self._entries[key]
        return len(expired)
