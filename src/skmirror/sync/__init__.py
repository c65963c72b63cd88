"""
Tree synchronization -- the engine and its collaborators.

The engine walks two trees through the storage abstraction, asks the
equality evaluator what differs, and applies the policy. Backend calls
are retried by the retry controller; the caller listens in through an
observer.
"""

from .engine import SyncEngine
from .equality import Comparison, EqualityEvaluator
from .models import (
    ActionKind,
    ActionRecord,
    EqualityMethod,
    ErrorRecord,
    ProgressRecord,
    RunOutcome,
    RunResult,
    RunStatistics,
    SyncPolicy,
)
from .observer import CallbackObserver, LoggingObserver, SyncObserver
from .retry import RetryController

__all__ = [
    "SyncEngine",
    "EqualityEvaluator",
    "Comparison",
    "EqualityMethod",
    "SyncPolicy",
    "RunStatistics",
    "RunOutcome",
    "RunResult",
    "ActionKind",
    "ActionRecord",
    "ErrorRecord",
    "ProgressRecord",
    "SyncObserver",
    "CallbackObserver",
    "LoggingObserver",
    "RetryController",
]
