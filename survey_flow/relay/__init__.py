from .chat_relay import ChatRelay, is_dialogue_finished
from .dedup import DedupTable
from .direct_line import DirectLineBackend
from .poller import ActivityPoller
from .transport import RetryableTransport

__all__ = [
    "ActivityPoller",
    "ChatRelay",
    "DedupTable",
    "DirectLineBackend",
    "RetryableTransport",
    "is_dialogue_finished",
]
