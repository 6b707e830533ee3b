"""Engine components: fetch → dedup → classify → publish → retention."""

from .classifier import Classifier
from .fetcher import FetchScheduler, SourceFetchResult
from .items import Classification, Decision, FeedItem, Priority, Source
from .state import DedupFilter, PersistedState, SourceState, SourceStats, StateStore
from .worker_pool import WorkerPool

__all__ = [
    "Classification",
    "Classifier",
    "Decision",
    "DedupFilter",
    "FeedItem",
    "FetchScheduler",
    "PersistedState",
    "Priority",
    "Source",
    "SourceFetchResult",
    "SourceState",
    "SourceStats",
    "StateStore",
    "WorkerPool",
]
