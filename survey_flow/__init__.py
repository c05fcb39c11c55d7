"""survey-flow: multi-step questionnaire navigation with an embedded conversational agent."""

from .config import load_config
from .core.session import SurveySession
from .types import (
    HistoryEntry,
    NavigationIntent,
    SessionSnapshot,
    SurveyFlowConfig,
    SurveyFlowError,
    TransportError,
)

__version__ = "0.1.0"

__all__ = [
    "SurveySession",
    "load_config",
    "HistoryEntry",
    "NavigationIntent",
    "SessionSnapshot",
    "SurveyFlowConfig",
    "SurveyFlowError",
    "TransportError",
]
