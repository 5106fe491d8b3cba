"""Multi-signal relevance scoring for digest candidates.

Score = weighted sum of five signals, each in [0, 1]:

    recency     linear decay over a fixed horizon (24h)
    relevance   share of watchlist weight the item matches
    affinity    closeness of the author to the reader
    novelty     constant baseline until personalized novelty exists
    provenance  trust derived from item visibility
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from digest_engine.core.entities import (
    CandidateItem,
    Persona,
    Provenance,
    ScoredItem,
    Visibility,
    WatchlistEntry,
    WatchlistKind,
)

RECENCY_HORIZON = timedelta(hours=24)
EMPTY_WATCHLIST_RELEVANCE = 0.1
NOVELTY_BASELINE = 0.8
GENERAL_CONFIDENCE = 0.3

AFFINITY_OWN = 1.0
AFFINITY_BY_VISIBILITY = {
    Visibility.FRIENDS: 0.8,
    Visibility.PUBLIC: 0.5,
}
AFFINITY_DEFAULT = 0.2

PROVENANCE_BY_VISIBILITY = {
    Visibility.PRIVATE: 1.0,
    Visibility.FRIENDS: 0.8,
    Visibility.PUBLIC: 0.6,
}
PROVENANCE_DEFAULT = 0.5

MATCH_TYPES = {
    WatchlistKind.TAG: "tag_match",
    WatchlistKind.CATEGORY: "category_match",
    WatchlistKind.PERSON: "person_follow",
    WatchlistKind.KEYWORD: "keyword_match",
}


@dataclass(frozen=True)
class ScoringWeights:
    """Signal weights; always used in normalized form."""

    recency: float = 0.35
    relevance: float = 0.30
    affinity: float = 0.15
    novelty: float = 0.10
    provenance: float = 0.10

    def __post_init__(self) -> None:
        if min(self.as_tuple()) < 0:
            raise ValueError("Scoring weights must be non-negative")
        if self.total <= 0:
            raise ValueError("Scoring weights must not all be zero")

    def as_tuple(self) -> tuple[float, float, float, float, float]:
        return (self.recency, self.relevance, self.affinity, self.novelty, self.provenance)

    @property
    def total(self) -> float:
        return sum(self.as_tuple())

    def normalized(self) -> "ScoringWeights":
        total = self.total
        if abs(total - 1.0) < 1e-9:
            return self
        return ScoringWeights(*(w / total for w in self.as_tuple()))


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True)
class SignalBreakdown:
    """Individual signal values behind one score."""

    recency: float
    relevance: float
    affinity: float
    novelty: float
    provenance: float


def entry_matches(entry: WatchlistEntry, item: CandidateItem) -> bool:
    """Kind-specific watchlist match."""
    if entry.kind == WatchlistKind.TAG:
        return entry.value in item.tags
    if entry.kind == WatchlistKind.CATEGORY:
        return item.category == entry.value
    if entry.kind == WatchlistKind.PERSON:
        return item.author == entry.value
    if entry.kind == WatchlistKind.KEYWORD:
        needle = entry.value.lower()
        return needle in item.title.lower() or needle in item.content.lower()
    return False


def recency_score(
    created_at: datetime, now: datetime, horizon: timedelta = RECENCY_HORIZON
) -> float:
    age = (now - created_at).total_seconds()
    return min(1.0, max(0.0, 1.0 - age / horizon.total_seconds()))


def relevance_score(item: CandidateItem, watchlist: list[WatchlistEntry]) -> float:
    matched = 0.0
    total = 0.0
    for entry in watchlist:
        if entry_matches(entry, item):
            matched += entry.weight
        total += entry.weight
    if total <= 0:
        return EMPTY_WATCHLIST_RELEVANCE
    return matched / total


def affinity_score(item: CandidateItem, persona: Optional[Persona]) -> float:
    if persona is not None and item.author == persona.user_id:
        return AFFINITY_OWN
    return AFFINITY_BY_VISIBILITY.get(item.visibility, AFFINITY_DEFAULT)


def provenance_score(item: CandidateItem) -> float:
    return PROVENANCE_BY_VISIBILITY.get(item.visibility, PROVENANCE_DEFAULT)


def explain(item: CandidateItem, watchlist: list[WatchlistEntry]) -> Provenance:
    """Describe the strongest watchlist match; first match wins ties.

    Confidence is the matched entry's weight clamped to 1.0, so boosted
    entries (weight above 1) report full confidence rather than a value
    outside [0, 1].
    """
    best: Optional[WatchlistEntry] = None
    for entry in watchlist:
        if entry_matches(entry, item) and (best is None or entry.weight > best.weight):
            best = entry

    if best is None:
        return Provenance(
            reason="General relevance",
            match_type="general",
            confidence=GENERAL_CONFIDENCE,
        )

    match_type = MATCH_TYPES[best.kind]
    return Provenance(
        reason=f"Matched {match_type.replace('_', ' ')}: {best.value}",
        match_type=match_type,
        confidence=min(1.0, best.weight),
    )


class ScoringEngine:
    """Compute weighted relevance scores for candidate items."""

    def __init__(
        self,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        novelty: float = NOVELTY_BASELINE,
        horizon: timedelta = RECENCY_HORIZON,
    ) -> None:
        if not 0.0 <= novelty <= 1.0:
            raise ValueError("Novelty must be within [0, 1]")
        if horizon.total_seconds() <= 0:
            raise ValueError("Recency horizon must be positive")
        self.weights = weights.normalized()
        self.novelty = novelty
        self.horizon = horizon

    def signals(
        self,
        item: CandidateItem,
        watchlist: list[WatchlistEntry],
        persona: Optional[Persona],
        now: datetime,
    ) -> SignalBreakdown:
        return SignalBreakdown(
            recency=recency_score(item.created_at, now, self.horizon),
            relevance=relevance_score(item, watchlist),
            affinity=affinity_score(item, persona),
            novelty=self.novelty,
            provenance=provenance_score(item),
        )

    def combine(self, signals: SignalBreakdown) -> float:
        w = self.weights
        score = (
            w.recency * signals.recency
            + w.relevance * signals.relevance
            + w.affinity * signals.affinity
            + w.novelty * signals.novelty
            + w.provenance * signals.provenance
        )
        return min(1.0, max(0.0, score))

    def score(
        self,
        item: CandidateItem,
        watchlist: list[WatchlistEntry],
        persona: Optional[Persona],
        now: datetime,
    ) -> ScoredItem:
        signals = self.signals(item, watchlist, persona, now)
        return ScoredItem(
            item=item,
            score=self.combine(signals),
            provenance=explain(item, watchlist),
        )

    def rank(
        self,
        items: list[CandidateItem],
        watchlist: list[WatchlistEntry],
        persona: Optional[Persona],
        now: datetime,
    ) -> list[ScoredItem]:
        """Score and sort: score desc, then newest first, then id."""
        scored = [self.score(item, watchlist, persona, now) for item in items]
        scored.sort(key=lambda s: s.item.id)
        scored.sort(key=lambda s: (s.score, s.item.created_at), reverse=True)
        return scored
