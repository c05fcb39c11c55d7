from __future__ import annotations

from ..core.state_store import MemoryStateStore, PersistedStateStore
from ..types import StorageConfig
from .filesystem import FilesystemStateStore
from .sqlite import SQLiteStateStore


def open_state_store(config: StorageConfig, session_id: str) -> PersistedStateStore:
    """Build the configured store for one session."""
    if config.backend == "sqlite":
        return SQLiteStateStore(db_path=config.sqlite_path, session_id=session_id)
    if config.backend == "memory":
        return MemoryStateStore()
    return FilesystemStateStore(root=config.root, session_id=session_id)


__all__ = ["FilesystemStateStore", "SQLiteStateStore", "open_state_store"]
