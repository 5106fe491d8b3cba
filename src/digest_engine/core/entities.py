"""Core domain entities."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

MIN_WATCH_WEIGHT = 0.0
MAX_WATCH_WEIGHT = 2.0
DEFAULT_WATCH_WEIGHT = 1.0


def parse_datetime(value: Any) -> datetime:
    """Parse an ISO timestamp (or pass a datetime through) as an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class WatchlistKind(str, Enum):
    """Kind of watchlist entry."""

    TAG = "tag"
    PERSON = "person"
    CATEGORY = "category"
    KEYWORD = "keyword"


class Visibility(str, Enum):
    """Audience a content item was published to."""

    PRIVATE = "private"
    FRIENDS = "friends"
    PUBLIC = "public"


@dataclass(frozen=True)
class WatchlistEntry:
    """Weighted interest of a user."""

    kind: WatchlistKind
    value: str
    weight: float = DEFAULT_WATCH_WEIGHT

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError("Watchlist value cannot be empty")
        object.__setattr__(self, "kind", WatchlistKind(self.kind))
        weight = DEFAULT_WATCH_WEIGHT if self.weight is None else float(self.weight)
        object.__setattr__(self, "weight", min(MAX_WATCH_WEIGHT, max(MIN_WATCH_WEIGHT, weight)))

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "value": self.value, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: dict) -> "WatchlistEntry":
        return cls(
            kind=WatchlistKind(data["kind"]),
            value=data["value"],
            weight=data.get("weight", DEFAULT_WATCH_WEIGHT),
        )


@dataclass(frozen=True)
class CandidateItem:
    """Content record considered for a digest."""

    id: str
    author: str
    title: str
    content: str
    created_at: datetime
    tags: tuple[str, ...] = ()
    category: str = ""
    visibility: Optional[Visibility] = Visibility.PUBLIC

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Item id cannot be empty")
        object.__setattr__(self, "tags", tuple(self.tags or ()))
        object.__setattr__(self, "created_at", parse_datetime(self.created_at))
        if self.visibility is not None and not isinstance(self.visibility, Visibility):
            try:
                object.__setattr__(self, "visibility", Visibility(self.visibility))
            except ValueError:
                # Unknown audiences score with the default branch
                object.__setattr__(self, "visibility", None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author": self.author,
            "title": self.title,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "tags": list(self.tags),
            "category": self.category,
            "visibility": self.visibility.value if self.visibility else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CandidateItem":
        return cls(
            id=data["id"],
            author=data.get("author", ""),
            title=data.get("title", ""),
            content=data.get("content", ""),
            created_at=parse_datetime(data["created_at"]),
            tags=tuple(data.get("tags") or ()),
            category=data.get("category") or "",
            visibility=data.get("visibility"),
        )


@dataclass(frozen=True)
class Provenance:
    """Why an item was selected."""

    reason: str
    match_type: str
    confidence: float

    def to_dict(self) -> dict:
        return {"reason": self.reason, "match_type": self.match_type, "confidence": self.confidence}

    @classmethod
    def from_dict(cls, data: dict) -> "Provenance":
        return cls(
            reason=data["reason"],
            match_type=data["match_type"],
            confidence=data["confidence"],
        )


@dataclass(frozen=True)
class HighlightActions:
    """Actions the client may offer on a highlight."""

    can_open: bool = True
    can_reply: bool = True
    can_save: bool = True
    can_ping: bool = False

    def to_dict(self) -> dict:
        return {
            "can_open": self.can_open,
            "can_reply": self.can_reply,
            "can_save": self.can_save,
            "can_ping": self.can_ping,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HighlightActions":
        return cls(**data)


@dataclass(frozen=True)
class ScoredItem:
    """Candidate item with its score and, once summarized, its TL;DR."""

    item: CandidateItem
    score: float
    provenance: Provenance
    tldr: Optional[str] = None
    actions: HighlightActions = field(default_factory=HighlightActions)

    def to_dict(self) -> dict:
        data = self.item.to_dict()
        data.update({
            "score": self.score,
            "provenance": self.provenance.to_dict(),
            "tldr": self.tldr,
            "actions": self.actions.to_dict(),
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ScoredItem":
        return cls(
            item=CandidateItem.from_dict(data),
            score=data["score"],
            provenance=Provenance.from_dict(data["provenance"]),
            tldr=data.get("tldr"),
            actions=HighlightActions.from_dict(data.get("actions") or {}),
        )


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time range a digest covers."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", parse_datetime(self.start))
        object.__setattr__(self, "end", parse_datetime(self.end))
        if self.start > self.end:
            raise ValueError("Window start must not be after window end")

    @property
    def slice_key(self) -> str:
        return f"{self.start.isoformat()}_{self.end.isoformat()}"

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "TimeWindow":
        return cls(start=parse_datetime(data["start"]), end=parse_datetime(data["end"]))


@dataclass(frozen=True)
class DigestResult:
    """Ranked, summarized highlights for one user and window."""

    highlights: list[ScoredItem]
    total_items: int
    time_window: TimeWindow
    summary: str
    continue_token: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "highlights": [h.to_dict() for h in self.highlights],
            "total_items": self.total_items,
            "time_window": self.time_window.to_dict(),
            "summary": self.summary,
        }
        if self.continue_token is not None:
            data["continue_token"] = self.continue_token
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DigestResult":
        return cls(
            highlights=[ScoredItem.from_dict(h) for h in data.get("highlights", [])],
            total_items=data["total_items"],
            time_window=TimeWindow.from_dict(data["time_window"]),
            summary=data["summary"],
            continue_token=data.get("continue_token"),
        )


@dataclass(frozen=True)
class StoredDigest:
    """Digest read back from the system of record with its expiry."""

    digest: DigestResult
    expires_at: datetime

    def ttl_seconds(self, now: datetime) -> int:
        """Whole seconds left before expiry, rounded up."""
        return max(0, math.ceil((self.expires_at - now).total_seconds()))


@dataclass(frozen=True)
class Persona:
    """Per-user agent settings read by the digest engine."""

    user_id: str
    last_active: Optional[datetime] = None
    autonomy_flags: dict[str, bool] = field(default_factory=dict)

    @property
    def pings_allowed(self) -> bool:
        return bool(self.autonomy_flags.get("pings_allowed", False))

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "last_active": self.last_active.isoformat() if self.last_active else None,
            "autonomy_flags": dict(self.autonomy_flags),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Persona":
        last_active = data.get("last_active")
        return cls(
            user_id=data["user_id"],
            last_active=parse_datetime(last_active) if last_active else None,
            autonomy_flags=dict(data.get("autonomy_flags") or {}),
        )


@dataclass(frozen=True)
class CandidateFilters:
    """Watchlist-derived filters for candidate lookup."""

    tags: frozenset[str] = frozenset()
    categories: frozenset[str] = frozenset()
    authors: frozenset[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not (self.tags or self.categories or self.authors)

    @classmethod
    def from_watchlist(cls, watchlist: list[WatchlistEntry]) -> "CandidateFilters":
        def values(kind: WatchlistKind) -> frozenset[str]:
            return frozenset(e.value for e in watchlist if e.kind == kind)

        return cls(
            tags=values(WatchlistKind.TAG),
            categories=values(WatchlistKind.CATEGORY),
            authors=values(WatchlistKind.PERSON),
        )

    def matches(self, item: CandidateItem) -> bool:
        """Every non-empty filter must match; no filters admits everything."""
        if self.tags and not self.tags.intersection(item.tags):
            return False
        if self.categories and item.category not in self.categories:
            return False
        if self.authors and item.author not in self.authors:
            return False
        return True


class RelevanceLevel(str, Enum):
    """Coarse relevance bucket produced by the index pass."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class IndexResult:
    """Structured analysis of one content item."""

    main_topic: str
    key_concepts: list[str]
    relevance_level: RelevanceLevel
    content_type: str
    entities: list[str]
    relevance_score: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "relevance_level", RelevanceLevel(self.relevance_level))
        if not 1 <= len(self.key_concepts) <= 5:
            raise ValueError("Index must carry between 1 and 5 key concepts")
        if not 0.0 <= self.relevance_score <= 1.0:
            raise ValueError("Relevance score must be within [0, 1]")
