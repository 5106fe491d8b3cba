"""Claude-backed summarizer for the index, preview and refine passes."""

import asyncio
import json
import logging
import re
from typing import Any

import httpx

from digest_engine.config import Settings
from digest_engine.core.entities import IndexResult, RelevanceLevel, WatchlistEntry
from digest_engine.core.errors import SummarizationError
from digest_engine.core.interfaces import Summarizer

log = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 8000


def describe_watchlist(watchlist: list[WatchlistEntry]) -> str:
    if not watchlist:
        return "(none)"
    return ", ".join(f"{e.kind.value}:{e.value} (weight {e.weight:g})" for e in watchlist)


class ClaudeSummarizer(Summarizer):
    """Summarizer over the Anthropic Messages API.

    Any error raised here makes the pipeline fall back to local heuristics.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.api_key = settings.anthropic_api_key
        self.model = settings.claude.model
        self.max_tokens = settings.claude.max_tokens
        self.temperature = settings.claude.temperature
        self.base_url = "https://api.anthropic.com/v1"
        self.max_retries = settings.claude.max_retries
        self.initial_retry_delay = settings.claude.initial_retry_delay
        self.request_delay = settings.claude.request_delay
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def index(
        self, content: str, tags: list[str], watchlist: list[WatchlistEntry]
    ) -> IndexResult:
        prompt = self.settings.prompts.index.get("user", "").format(
            watchlist=describe_watchlist(watchlist),
            tags=", ".join(tags) or "(none)",
            content=content[:MAX_CONTENT_CHARS],
        )
        response = await self._call_api(prompt=prompt, system=self.settings.prompts.index.get("system", ""))
        json_text = self._extract_json(response)

        try:
            data = json.loads(json_text)
            return self._parse_index(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            log.warning("Claude returned an unusable index: %s (%s)", e, response[:200])
            raise SummarizationError(f"Failed to parse index response: {str(e)[:100]}") from e

    async def preview(
        self, content: str, index: IndexResult, watchlist: list[WatchlistEntry]
    ) -> str:
        prompt = self.settings.prompts.preview.get("user", "").format(
            watchlist=describe_watchlist(watchlist),
            main_topic=index.main_topic,
            key_concepts=", ".join(index.key_concepts),
            content=content[:MAX_CONTENT_CHARS],
        )
        response = await self._call_api(prompt=prompt, system=self.settings.prompts.preview.get("system", ""))
        text = response.strip().strip('"').strip()
        return text.splitlines()[0] if text else ""

    async def refine(
        self,
        content: str,
        preview: str,
        index: IndexResult,
        watchlist: list[WatchlistEntry],
    ) -> str:
        prompt = self.settings.prompts.refine.get("user", "").format(
            preview=preview,
            watchlist=describe_watchlist(watchlist),
            main_topic=index.main_topic,
            relevance_level=index.relevance_level.value,
        )
        response = await self._call_api(prompt=prompt, system=self.settings.prompts.refine.get("system", ""))
        return response.strip()

    def _parse_index(self, data: Any) -> IndexResult:
        if not isinstance(data, dict):
            raise ValueError("index response is not an object")
        concepts = [str(c) for c in data.get("key_concepts") or []][:5]
        if not concepts:
            concepts = [str(data["main_topic"])]
        level = str(data.get("relevance_level", "low")).lower()
        score = min(1.0, max(0.0, float(data.get("relevance_score", 0.0))))
        return IndexResult(
            main_topic=str(data["main_topic"]),
            key_concepts=concepts,
            relevance_level=RelevanceLevel(level),
            content_type=str(data.get("content_type", "general")),
            entities=[str(e) for e in data.get("entities") or []],
            relevance_score=score,
        )

    async def _call_api(self, prompt: str, system: str) -> str:
        """Call Claude API with retry logic and rate limiting."""
        # Items are summarized concurrently; keep a minimum gap between requests
        async with self._lock:
            loop = asyncio.get_running_loop()
            time_since_last_request = loop.time() - self._last_request_time
            if time_since_last_request < self.request_delay:
                await asyncio.sleep(self.request_delay - time_since_last_request)
            self._last_request_time = loop.time()

        last_exception = None

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=60.0) as client:
                    response = await client.post(
                        f"{self.base_url}/messages",
                        headers={
                            "x-api-key": self.api_key,
                            "anthropic-version": "2023-06-01",
                            "content-type": "application/json",
                        },
                        json={
                            "model": self.model,
                            "max_tokens": self.max_tokens,
                            "temperature": self.temperature,
                            "system": system,
                            "messages": [
                                {"role": "user", "content": prompt}
                            ],
                        },
                    )

                    if response.status_code == 200:
                        data = response.json()
                        return data["content"][0]["text"]

                    if response.status_code == 429:
                        retry_after = self._get_retry_delay(response, attempt)
                        log.warning(
                            "Rate limit hit, retrying after %.1fs (attempt %d/%d)",
                            retry_after, attempt + 1, self.max_retries,
                        )
                        await asyncio.sleep(retry_after)
                        continue

                    if response.status_code >= 500:
                        retry_delay = self.initial_retry_delay * (2 ** attempt)
                        log.warning(
                            "Server error %d, retrying after %.1fs", response.status_code, retry_delay
                        )
                        await asyncio.sleep(retry_delay)
                        continue

                    # Other errors are not retried
                    response.raise_for_status()

            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    retry_delay = self.initial_retry_delay * (2 ** attempt)
                    log.warning("Network error, retrying after %.1fs: %s", retry_delay, e)
                    await asyncio.sleep(retry_delay)
                    continue
                raise

        if last_exception:
            raise last_exception
        raise SummarizationError("Failed to call API after all retries")

    def _get_retry_delay(self, response: httpx.Response, attempt: int) -> float:
        """Calculate retry delay from response headers or use exponential backoff."""
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass

        return self.initial_retry_delay * (2 ** attempt)

    def _fix_json(self, text: str) -> str:
        """Remove trailing commas before } or ]."""
        return re.sub(r',(\s*[}\]])', r'\1', text)

    def _extract_json(self, text: str) -> str:
        """Extract JSON from markdown code block or raw text."""
        code_block_match = re.search(r'```(?:json)?\s*\n(.*?)\n```', text, re.DOTALL)
        if code_block_match:
            return self._fix_json(code_block_match.group(1).strip())

        # First object that parses, allowing one level of nesting
        json_object_match = re.search(r'\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}', text, re.DOTALL)
        if json_object_match:
            candidate = self._fix_json(json_object_match.group(0))
            try:
                json.loads(candidate)
                return candidate
            except json.JSONDecodeError:
                pass

        return self._fix_json(text.strip())
