"""PersistedStateStore: abstract session-scoped key/value storage."""

from __future__ import annotations

from abc import ABC, abstractmethod


class PersistedStateStore(ABC):
    """Durable string key/value storage scoped to one browser-tab session.

    No logic lives here: owners serialize their own values.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""

    @abstractmethod
    def keys(self) -> list[str]:
        """List stored keys."""

    def clear(self) -> None:
        for key in self.keys():
            self.remove(key)


class MemoryStateStore(PersistedStateStore):
    """In-process store; lives as long as the object."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()
