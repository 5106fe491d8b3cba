"""Three-pass TL;DR generation with a deterministic local fallback."""

import logging
import re
from collections import Counter
from typing import Optional

from digest_engine.core.entities import IndexResult, RelevanceLevel, WatchlistEntry
from digest_engine.core.errors import SummarizationError
from digest_engine.core.interfaces import Summarizer

log = logging.getLogger(__name__)

PREVIEW_MAX_CHARS = 120
REFINE_PREVIEW_CHARS = 60
FALLBACK_MAX_CHARS = 100
ELLIPSIS = "..."
MAX_KEY_CONCEPTS = 5
CONCEPT_MATCH_BOOST = 0.5
MAX_COUNTED_MATCHES = 3

_SENTENCE_SPLIT = re.compile(r"[.!?]+")

TOPIC_STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
})

CONCEPT_STOPWORDS = frozenset({
    "this", "that", "with", "from", "they", "have", "been", "were", "said", "each",
    "which", "their", "time", "will", "about", "there", "could", "other", "after",
    "first", "well", "also", "want", "because", "these", "give", "most", "being",
    "would", "should", "might", "must", "shall",
})

CONTENT_TYPE_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("tutorial", ("tutorial", "how to", "step")),
    ("news", ("news", "announced", "released")),
    ("opinion", ("i think", "opinion", "believe")),
    ("research", ("research", "study", "data")),
)


def split_sentences(content: str) -> list[str]:
    return [s for s in _SENTENCE_SPLIT.split(content) if s.strip()]


def truncate(text: str, limit: int) -> str:
    """Cut to `limit` characters and mark the cut with an ellipsis."""
    return text[:limit] + (ELLIPSIS if len(text) > limit else "")


def keyword_overlap(sentence: str, watchlist: list[WatchlistEntry]) -> float:
    lowered = sentence.lower()
    return sum(e.weight for e in watchlist if e.value.lower() in lowered)


def best_sentence(sentences: list[str], scores: list[float]) -> str:
    """Highest scoring sentence; the earliest one wins ties."""
    best, best_score = sentences[0], 0.0
    for sentence, score in zip(sentences, scores):
        if score > best_score:
            best, best_score = sentence, score
    return best


def fallback_tldr(content: str, tags: list[str], watchlist: list[WatchlistEntry]) -> str:
    """Best keyword-weighted sentence, at most 100 characters plus an ellipsis."""
    sentences = split_sentences(content)
    if not sentences:
        return content.strip()[:FALLBACK_MAX_CHARS] + ELLIPSIS
    chosen = best_sentence(sentences, [keyword_overlap(s, watchlist) for s in sentences])
    return truncate(chosen.strip(), FALLBACK_MAX_CHARS)


# Index pass heuristics

def extract_main_topic(content: str) -> str:
    words = [
        w for w in content.lower().split()
        if len(w) > 3 and w not in TOPIC_STOPWORDS
    ]
    if not words:
        return "general"
    return Counter(words).most_common(1)[0][0]


def extract_key_concepts(content: str, watchlist: list[WatchlistEntry]) -> list[str]:
    lowered = content.lower()
    concepts = [e.value for e in watchlist if e.value.lower() in lowered]

    extra: list[str] = []
    for word in lowered.split():
        if len(word) > 4 and word not in CONCEPT_STOPWORDS and word not in extra:
            extra.append(word)
        if len(extra) == 3:
            break
    concepts.extend(extra)
    return concepts[:MAX_KEY_CONCEPTS]


def keyword_relevance(content: str, watchlist: list[WatchlistEntry]) -> float:
    """Weighted keyword hit rate, each entry counted at most three times."""
    lowered = content.lower()
    total_score = 0.0
    total_weight = 0.0
    for entry in watchlist:
        hits = len(re.findall(re.escape(entry.value.lower()), lowered))
        total_score += entry.weight * min(hits, MAX_COUNTED_MATCHES)
        total_weight += entry.weight
    if total_weight <= 0:
        return 0.1
    return min(total_score / total_weight, 1.0)


def relevance_level(score: float) -> RelevanceLevel:
    if score > 0.7:
        return RelevanceLevel.HIGH
    if score > 0.4:
        return RelevanceLevel.MEDIUM
    return RelevanceLevel.LOW


def detect_content_type(content: str) -> str:
    lowered = content.lower()
    for content_type, markers in CONTENT_TYPE_MARKERS:
        if any(marker in lowered for marker in markers):
            return content_type
    return "general"


def extract_entities(content: str) -> list[str]:
    entities: list[str] = []
    for word in content.split():
        if len(word) > 2 and "A" <= word[0] <= "Z" and word not in entities:
            entities.append(word)
        if len(entities) == 3:
            break
    return entities


def matched_values(
    content: str, watchlist: list[WatchlistEntry], tags: tuple[str, ...] = ()
) -> list[str]:
    """Watchlist values present in content or tags, heaviest first."""
    lowered = content.lower()
    lowered_tags = {t.lower() for t in tags}
    hits = [
        e for e in watchlist
        if e.value.lower() in lowered or e.value.lower() in lowered_tags
    ]
    hits.sort(key=lambda e: e.weight, reverse=True)
    return [e.value for e in hits]


class HeuristicSummarizer(Summarizer):
    """Local implementation of the three passes, no external calls."""

    async def index(
        self, content: str, tags: list[str], watchlist: list[WatchlistEntry]
    ) -> IndexResult:
        main_topic = extract_main_topic(content)
        concepts = extract_key_concepts(content, watchlist) or [main_topic]
        score = keyword_relevance(content, watchlist)
        return IndexResult(
            main_topic=main_topic,
            key_concepts=concepts,
            relevance_level=relevance_level(score),
            content_type=detect_content_type(content),
            entities=extract_entities(content),
            relevance_score=score,
        )

    async def preview(
        self, content: str, index: IndexResult, watchlist: list[WatchlistEntry]
    ) -> str:
        sentences = split_sentences(content)
        if not sentences:
            return truncate(content.strip(), PREVIEW_MAX_CHARS - len(ELLIPSIS))

        scores = []
        for sentence in sentences:
            lowered = sentence.lower()
            score = keyword_overlap(sentence, watchlist)
            score += CONCEPT_MATCH_BOOST * sum(
                1 for concept in index.key_concepts if concept.lower() in lowered
            )
            scores.append(score)
        return truncate(best_sentence(sentences, scores).strip(), PREVIEW_MAX_CHARS - len(ELLIPSIS))

    async def refine(
        self,
        content: str,
        preview: str,
        index: IndexResult,
        watchlist: list[WatchlistEntry],
    ) -> str:
        matches = matched_values(content, watchlist)
        if index.relevance_level == RelevanceLevel.HIGH and matches:
            reason = f"matches your interests in {', '.join(matches[:2])}"
        else:
            reason = f"relates to {index.main_topic}"
        return f"TL;DR: {truncate(preview, REFINE_PREVIEW_CHARS)} (Relevant because: {reason})"


class SummarizationPipeline:
    """Run index -> preview -> refine; fall back locally when any pass fails.

    Stateless per call, so callers may summarize many items concurrently.
    """

    def __init__(self, summarizer: Optional[Summarizer] = None) -> None:
        self.summarizer = summarizer or HeuristicSummarizer()

    async def generate_tldr(
        self, content: str, tags: list[str], watchlist: list[WatchlistEntry]
    ) -> str:
        try:
            return await self._run_passes(content, list(tags), list(watchlist))
        except Exception as e:
            log.warning("Summarization failed, using fallback: %s: %s", type(e).__name__, e)
            return fallback_tldr(content, list(tags), list(watchlist))

    async def _run_passes(
        self, content: str, tags: list[str], watchlist: list[WatchlistEntry]
    ) -> str:
        index = await self.summarizer.index(content, tags, watchlist)
        preview = await self.summarizer.preview(content, index, watchlist)
        if not preview or not preview.strip():
            raise SummarizationError("Preview pass returned no text")
        preview = truncate(preview.strip(), PREVIEW_MAX_CHARS - len(ELLIPSIS))
        tldr = await self.summarizer.refine(content, preview, index, watchlist)
        if not tldr or not tldr.strip():
            raise SummarizationError("Refine pass returned no text")
        return tldr.strip()
