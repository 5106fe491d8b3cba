"""Core domain layer."""

from digest_engine.core.entities import (
    CandidateFilters,
    CandidateItem,
    DigestResult,
    HighlightActions,
    IndexResult,
    Persona,
    Provenance,
    RelevanceLevel,
    ScoredItem,
    StoredDigest,
    TimeWindow,
    Visibility,
    WatchlistEntry,
    WatchlistKind,
)
from digest_engine.core.interfaces import (
    CacheBackend,
    CandidateStore,
    DigestStore,
    JobStore,
    PersonaStore,
    PingStore,
    Summarizer,
    WatchlistStore,
)
from digest_engine.core.jobs import Job, JobFailure, JobType
from digest_engine.core.scoring import ScoringEngine, ScoringWeights
from digest_engine.core.summarization import SummarizationPipeline

__all__ = [
    "CandidateFilters",
    "CandidateItem",
    "DigestResult",
    "HighlightActions",
    "IndexResult",
    "Persona",
    "Provenance",
    "RelevanceLevel",
    "ScoredItem",
    "StoredDigest",
    "TimeWindow",
    "Visibility",
    "WatchlistEntry",
    "WatchlistKind",
    "CacheBackend",
    "CandidateStore",
    "DigestStore",
    "JobStore",
    "PersonaStore",
    "PingStore",
    "Summarizer",
    "WatchlistStore",
    "Job",
    "JobFailure",
    "JobType",
    "ScoringEngine",
    "ScoringWeights",
    "SummarizationPipeline",
]
