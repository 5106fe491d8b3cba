"""Background job entities."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from digest_engine.core.entities import TimeWindow, WatchlistEntry, parse_datetime

DEFAULT_MAX_ATTEMPTS = 3


class JobType(str, Enum):
    """Kinds of deferred work."""

    DIGEST_GENERATION = "digest_generation"
    PING_PROCESSING = "ping_processing"
    LLM_SUMMARIZATION = "llm_summarization"
    WATCHLIST_UPDATE = "watchlist_update"


# Workers poll job types in this order every tick
JOB_TYPE_ORDER: tuple[JobType, ...] = (
    JobType.DIGEST_GENERATION,
    JobType.PING_PROCESSING,
    JobType.LLM_SUMMARIZATION,
    JobType.WATCHLIST_UPDATE,
)

DEFAULT_PRIORITIES: dict[JobType, int] = {
    JobType.DIGEST_GENERATION: 1,
    JobType.PING_PROCESSING: 2,
    JobType.LLM_SUMMARIZATION: 3,
    JobType.WATCHLIST_UPDATE: 4,
}


@dataclass(frozen=True)
class DigestGenerationPayload:
    user_id: str
    window: Optional[TimeWindow] = None
    max_items: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "window": self.window.to_dict() if self.window else None,
            "max_items": self.max_items,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DigestGenerationPayload":
        window = data.get("window")
        return cls(
            user_id=data["user_id"],
            window=TimeWindow.from_dict(window) if window else None,
            max_items=data.get("max_items"),
        )


@dataclass(frozen=True)
class PingProcessingPayload:
    ping_id: str
    from_persona_id: str
    to_persona_id: str

    def to_dict(self) -> dict:
        return {
            "ping_id": self.ping_id,
            "from_persona_id": self.from_persona_id,
            "to_persona_id": self.to_persona_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PingProcessingPayload":
        return cls(
            ping_id=data["ping_id"],
            from_persona_id=data["from_persona_id"],
            to_persona_id=data["to_persona_id"],
        )


@dataclass(frozen=True)
class SummarizationPayload:
    content: str
    tags: tuple[str, ...] = ()
    watchlist: tuple[WatchlistEntry, ...] = ()
    item_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "tags": list(self.tags),
            "watchlist": [e.to_dict() for e in self.watchlist],
            "item_id": self.item_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SummarizationPayload":
        return cls(
            content=data["content"],
            tags=tuple(data.get("tags") or ()),
            watchlist=tuple(WatchlistEntry.from_dict(e) for e in data.get("watchlist") or ()),
            item_id=data.get("item_id"),
        )


@dataclass(frozen=True)
class WatchlistUpdatePayload:
    user_id: str
    watchlist: tuple[WatchlistEntry, ...] = ()

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "watchlist": [e.to_dict() for e in self.watchlist],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WatchlistUpdatePayload":
        return cls(
            user_id=data["user_id"],
            watchlist=tuple(WatchlistEntry.from_dict(e) for e in data.get("watchlist") or ()),
        )


JobPayload = Union[
    DigestGenerationPayload,
    PingProcessingPayload,
    SummarizationPayload,
    WatchlistUpdatePayload,
]

PAYLOAD_TYPES: dict[JobType, type] = {
    JobType.DIGEST_GENERATION: DigestGenerationPayload,
    JobType.PING_PROCESSING: PingProcessingPayload,
    JobType.LLM_SUMMARIZATION: SummarizationPayload,
    JobType.WATCHLIST_UPDATE: WatchlistUpdatePayload,
}


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


@dataclass
class Job:
    """Unit of deferred work owned by the queue and, while running, by one worker."""

    type: JobType
    payload: JobPayload
    priority: int = 0
    id: str = field(default_factory=new_job_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self) -> None:
        self.type = JobType(self.type)
        expected = PAYLOAD_TYPES[self.type]
        if not isinstance(self.payload, expected):
            raise ValueError(
                f"Job of type {self.type.value} needs {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload.to_dict(),
            "priority": self.priority,
            "created_at": self.created_at.isoformat(),
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        job_type = JobType(data["type"])
        return cls(
            id=data["id"],
            type=job_type,
            payload=PAYLOAD_TYPES[job_type].from_dict(data["payload"]),
            priority=int(data.get("priority", 0)),
            created_at=parse_datetime(data["created_at"]),
            attempts=int(data.get("attempts", 0)),
            max_attempts=int(data.get("max_attempts", DEFAULT_MAX_ATTEMPTS)),
        )


@dataclass(frozen=True)
class JobFailure:
    """Audit record for a job that will never be retried again."""

    job_id: str
    job_type: JobType
    payload: dict
    attempts: int
    error: str
    failed_at: datetime

    @classmethod
    def from_job(cls, job: Job, error: BaseException) -> "JobFailure":
        return cls(
            job_id=job.id,
            job_type=job.type,
            payload=job.payload.to_dict(),
            attempts=job.attempts,
            error=f"{type(error).__name__}: {error}",
            failed_at=datetime.now(timezone.utc),
        )
