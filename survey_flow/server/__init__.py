from .app import assign_group, build_relay, create_app, create_participant_id
from .responses import ResponseStore

__all__ = [
    "create_app",
    "build_relay",
    "assign_group",
    "create_participant_id",
    "ResponseStore",
]
