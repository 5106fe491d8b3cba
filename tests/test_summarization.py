"""Tests for the summarization pipeline."""

from unittest.mock import AsyncMock

import pytest

from digest_engine.core import IndexResult, SummarizationPipeline, WatchlistEntry, WatchlistKind
from digest_engine.core.summarization import (
    HeuristicSummarizer,
    extract_main_topic,
    fallback_tldr,
    keyword_relevance,
    relevance_level,
    split_sentences,
)

CONTENT = (
    "The weather was pleasant this morning. "
    "Rust now ships faster async closures for tokio users. "
    "Meanwhile the cafe ran out of croissants."
)


def kw(value: str, weight: float = 1.0) -> WatchlistEntry:
    return WatchlistEntry(kind=WatchlistKind.KEYWORD, value=value, weight=weight)


def failing_summarizer(stage: str) -> AsyncMock:
    summarizer = AsyncMock()
    summarizer.index.return_value = IndexResult("rust", ["rust"], "high", "news", [], 0.9)
    summarizer.preview.return_value = "Rust ships async closures"
    summarizer.refine.return_value = "TL;DR: Rust ships async closures (Relevant because: rust)"
    getattr(summarizer, stage).side_effect = RuntimeError(f"{stage} exploded")
    return summarizer


@pytest.mark.asyncio
async def test_heuristic_pipeline_produces_tldr() -> None:
    pipeline = SummarizationPipeline()

    tldr = await pipeline.generate_tldr(CONTENT, ["rust"], [kw("rust", 1.5), kw("async")])

    assert tldr.startswith("TL;DR: Rust now ships")
    assert "(Relevant because: " in tldr
    # Preview part is capped at 60 characters plus ellipsis
    preview = tldr[len("TL;DR: "):tldr.index(" (Relevant because")]
    assert len(preview) <= 63


@pytest.mark.asyncio
async def test_high_relevance_lists_top_matches() -> None:
    pipeline = SummarizationPipeline()
    content = "Rust async. Rust async. Rust async."

    tldr = await pipeline.generate_tldr(content, [], [kw("async", 0.5), kw("rust", 2.0)])

    assert tldr.endswith("(Relevant because: matches your interests in rust, async)")


@pytest.mark.asyncio
async def test_low_relevance_uses_main_topic() -> None:
    pipeline = SummarizationPipeline()

    tldr = await pipeline.generate_tldr("Gardening gardening tips for spring", [], [kw("rust")])

    assert tldr.endswith("(Relevant because: relates to gardening)")


@pytest.mark.asyncio
@pytest.mark.parametrize("stage", ["index", "preview", "refine"])
async def test_any_failing_pass_uses_fallback(stage: str) -> None:
    watchlist = [kw("tokio", 2.0)]
    pipeline = SummarizationPipeline(failing_summarizer(stage))

    first = await pipeline.generate_tldr(CONTENT, [], watchlist)
    second = await pipeline.generate_tldr(CONTENT, [], watchlist)

    assert first == second == fallback_tldr(CONTENT, [], watchlist)
    assert first == "Rust now ships faster async closures for tokio users"
    assert 0 < len(first) <= 103


@pytest.mark.asyncio
async def test_empty_refine_output_uses_fallback() -> None:
    summarizer = failing_summarizer("index")
    summarizer.index.side_effect = None
    summarizer.refine.return_value = "   "
    pipeline = SummarizationPipeline(summarizer)

    tldr = await pipeline.generate_tldr(CONTENT, [], [kw("tokio")])

    assert tldr == fallback_tldr(CONTENT, [], [kw("tokio")])


@pytest.mark.parametrize("content", [
    "",
    "...",
    "x" * 500,
    "A single sentence without punctuation " * 10,
    CONTENT,
])
def test_fallback_is_bounded_and_non_empty(content: str) -> None:
    result = fallback_tldr(content, [], [kw("rust")])
    assert result
    assert len(result) <= 103


def test_fallback_prefers_first_sentence_on_ties() -> None:
    assert fallback_tldr("First one. Second one.", [], []) == "First one"


def test_split_sentences_drops_blanks() -> None:
    assert split_sentences("One. Two!! Three? ") == ["One", " Two", " Three"]


def test_keyword_relevance_caps_repeats() -> None:
    assert keyword_relevance("rust rust rust rust", [kw("rust")]) == 1.0
    assert keyword_relevance("nothing here", []) == 0.1
    assert relevance_level(0.8).value == "high"
    assert relevance_level(0.5).value == "medium"
    assert relevance_level(0.4).value == "low"


def test_main_topic_defaults_to_general() -> None:
    assert extract_main_topic("a an the") == "general"
    assert extract_main_topic("tokio tokio runtime") == "tokio"


@pytest.mark.asyncio
async def test_heuristic_preview_is_capped() -> None:
    summarizer = HeuristicSummarizer()
    content = "rust " * 100
    index = await summarizer.index(content, [], [kw("rust")])

    preview = await summarizer.preview(content, index, [kw("rust")])

    assert len(preview) <= 120
    assert preview.endswith("...")
