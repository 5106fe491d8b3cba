"""Tests for the Claude summarizer."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from digest_engine.adapters.llm import ClaudeSummarizer
from digest_engine.config import Settings
from digest_engine.core import IndexResult, RelevanceLevel, SummarizationPipeline, WatchlistEntry, WatchlistKind
from digest_engine.core.errors import SummarizationError

CONTENT = "Rust now ships faster async closures for tokio users."
WATCHLIST = [WatchlistEntry(kind=WatchlistKind.TAG, value="rust", weight=1.5)]


@pytest.fixture
def mock_settings() -> Settings:
    """Create mock settings."""
    settings = Settings(anthropic_api_key="test-key")
    settings.claude.enabled = True
    settings.claude.max_retries = 3
    settings.claude.initial_retry_delay = 0.01  # Faster for tests
    settings.claude.request_delay = 0.0
    return settings


def api_response(text: str, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = {}
    response.json.return_value = {"content": [{"text": text}]}
    return response


def mock_client_with(mock_client_class: MagicMock, *responses: MagicMock) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__.return_value = mock_client
    mock_client.post.side_effect = list(responses)
    mock_client_class.return_value = mock_client
    return mock_client


INDEX_JSON = json.dumps({
    "main_topic": "rust",
    "key_concepts": ["rust", "async", "tokio"],
    "relevance_level": "high",
    "content_type": "news",
    "entities": ["tokio"],
    "relevance_score": 0.9,
})


@pytest.mark.asyncio
async def test_index_parses_structured_response(mock_settings: Settings) -> None:
    summarizer = ClaudeSummarizer(mock_settings)

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_client_with(mock_client_class, api_response(f"```json\n{INDEX_JSON}\n```"))

        result = await summarizer.index(CONTENT, ["rust"], WATCHLIST)

    assert result.main_topic == "rust"
    assert result.key_concepts == ["rust", "async", "tokio"]
    assert result.relevance_level == RelevanceLevel.HIGH
    assert result.relevance_score == 0.9
    request = mock_client.post.call_args.kwargs["json"]
    assert request["model"] == mock_settings.claude.model
    assert "tag:rust (weight 1.5)" in request["messages"][0]["content"]


@pytest.mark.asyncio
async def test_index_clamps_score_and_concepts(mock_settings: Settings) -> None:
    summarizer = ClaudeSummarizer(mock_settings)
    payload = json.dumps({
        "main_topic": "rust",
        "key_concepts": ["a", "b", "c", "d", "e", "f", "g"],
        "relevance_level": "MEDIUM",
        "relevance_score": 3,
    })

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client_with(mock_client_class, api_response(payload))
        result = await summarizer.index(CONTENT, [], WATCHLIST)

    assert len(result.key_concepts) == 5
    assert result.relevance_level == RelevanceLevel.MEDIUM
    assert result.relevance_score == 1.0
    assert result.content_type == "general"


@pytest.mark.asyncio
async def test_index_rejects_unparseable_response(mock_settings: Settings) -> None:
    summarizer = ClaudeSummarizer(mock_settings)

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client_with(mock_client_class, api_response("I cannot analyze this post."))

        with pytest.raises(SummarizationError):
            await summarizer.index(CONTENT, [], WATCHLIST)


@pytest.mark.asyncio
async def test_retry_on_server_error(mock_settings: Settings) -> None:
    summarizer = ClaudeSummarizer(mock_settings)

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_client_with(
            mock_client_class,
            api_response("", status_code=500),
            api_response("Rust ships faster async closures."),
        )

        preview = await summarizer.preview(CONTENT, IndexResult(
            main_topic="rust",
            key_concepts=["rust"],
            relevance_level=RelevanceLevel.HIGH,
            content_type="news",
            entities=[],
            relevance_score=0.9,
        ), WATCHLIST)

    assert preview == "Rust ships faster async closures."
    assert mock_client.post.call_count == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(mock_settings: Settings) -> None:
    summarizer = ClaudeSummarizer(mock_settings)

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = mock_client_with(
            mock_client_class, *(api_response("", status_code=429) for _ in range(3))
        )

        with pytest.raises(SummarizationError):
            await summarizer._call_api("test", "system")

    assert mock_client.post.call_count == 3


@pytest.mark.asyncio
async def test_pipeline_falls_back_when_api_fails(mock_settings: Settings) -> None:
    pipeline = SummarizationPipeline(ClaudeSummarizer(mock_settings))

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client_with(
            mock_client_class, *(api_response("", status_code=503) for _ in range(9))
        )
        tldr = await pipeline.generate_tldr(CONTENT, ["rust"], WATCHLIST)

    assert tldr
    assert "Rust" in tldr


def test_extract_json_from_markdown(mock_settings: Settings) -> None:
    summarizer = ClaudeSummarizer(mock_settings)
    text = '```json\n{"main_topic": "rust", "relevance_score": 0.8,}\n```'
    parsed = json.loads(summarizer._extract_json(text))
    assert parsed["relevance_score"] == 0.8


def test_extract_json_from_text_with_prefix(mock_settings: Settings) -> None:
    summarizer = ClaudeSummarizer(mock_settings)
    text = 'Here is the analysis:\n{"main_topic": "go", "meta": {"lang": "en"}}'
    parsed = json.loads(summarizer._extract_json(text))
    assert parsed["main_topic"] == "go"
    assert parsed["meta"]["lang"] == "en"
