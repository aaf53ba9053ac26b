"""Analysis backend client and request scheduling."""

from .client import AnalysisBackend, ClientSettings, OpenAIAnalysisBackend, categorize_exception
from .scheduler import AnalysisOutcome, AnalysisScheduler, AnalysisState, AnalysisStatus, SchedulerConfig

__all__ = [
    "AnalysisBackend",
    "AnalysisOutcome",
    "AnalysisScheduler",
    "AnalysisState",
    "AnalysisStatus",
    "ClientSettings",
    "OpenAIAnalysisBackend",
    "SchedulerConfig",
    "categorize_exception",
]
