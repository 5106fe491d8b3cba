"""Business logic use cases."""

import asyncio
import base64
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from digest_engine.adapters.cache.rate_limit import RateLimiter
from digest_engine.adapters.cache.service import CacheService, Namespace, escape_glob
from digest_engine.core.entities import (
    CandidateFilters,
    DigestResult,
    HighlightActions,
    Persona,
    ScoredItem,
    TimeWindow,
    WatchlistEntry,
    WatchlistKind,
    MAX_WATCH_WEIGHT,
    MIN_WATCH_WEIGHT,
    parse_datetime,
)
from digest_engine.core.errors import (
    AuthorizationError,
    NotFoundError,
    RateLimitExceeded,
    TransientInfraError,
    ValidationError,
)
from digest_engine.core.interfaces import (
    CandidateStore,
    DigestStore,
    PersonaStore,
    WatchlistStore,
)
from digest_engine.core.scoring import ScoringEngine
from digest_engine.core.summarization import SummarizationPipeline
from digest_engine.jobs.worker import WorkerPool

log = logging.getLogger(__name__)

EMPTY_DIGEST_SUMMARY = "No new cherries found in your watchlist since your last visit."
DEFAULT_LOOKBACK = timedelta(hours=24)
DEFAULT_WINDOW_STEP = timedelta(minutes=1)
DEFAULT_MAX_ITEMS = 10
MAX_ITEMS_LIMIT = 100
CANDIDATE_LIMIT = 100
DIGEST_TTL_SECONDS = 15 * 60
WATCHLIST_TTL_SECONDS = 1800
PERSONA_TTL_SECONDS = 3600
TOKEN_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def snap_down(moment: datetime, step: timedelta) -> datetime:
    seconds = step.total_seconds()
    if seconds <= 0:
        return moment
    epoch = moment.timestamp()
    return datetime.fromtimestamp(epoch - epoch % seconds, tz=timezone.utc)


def encode_continue_token(slice_key: str, offset: int) -> str:
    """Opaque URL-safe token pointing at the next page of a digest."""
    data = {"slice": slice_key, "offset": offset, "version": TOKEN_VERSION}
    return base64.urlsafe_b64encode(json.dumps(data, separators=(",", ":")).encode()).decode()


def decode_continue_token(token: Any, slice_key: str) -> int:
    """Return the page offset a token points at; reject tokens for other windows."""
    if not isinstance(token, str):
        raise ValidationError("Continue token must be a string", field="continueToken")
    try:
        data = json.loads(base64.urlsafe_b64decode(token.encode()).decode())
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid continue token: {e}", field="continueToken") from e

    if not isinstance(data, dict):
        raise ValidationError("Invalid continue token", field="continueToken")
    offset = data.get("offset")
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 1:
        raise ValidationError("Continue token carries no valid offset", field="continueToken")
    if data.get("slice") != slice_key:
        raise ValidationError("Continue token belongs to a different window", field="continueToken")
    return offset


def digest_summary(highlights: list[ScoredItem], total_items: int) -> str:
    if not highlights:
        return EMPTY_DIGEST_SUMMARY
    top = highlights[0].item
    category = top.category or "uncategorized"
    return (
        f"Found {len(highlights)} highlights from {total_items} total items. "
        f"Top category: {category}. Most relevant: \"{top.title}\"."
    )


class PersonaService:
    """Read-through cache over the persona store."""

    def __init__(
        self, store: PersonaStore, cache: CacheService, ttl: int = PERSONA_TTL_SECONDS
    ) -> None:
        self.store = store
        self.cache = cache
        self.ttl = ttl

    async def get(self, user_id: str) -> Optional[Persona]:
        cached = await self.cache.get(Namespace.PERSONA, user_id)
        if cached is not None:
            try:
                return Persona.from_dict(cached)
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Ignoring malformed cached persona for %s: %s", user_id, e)

        try:
            persona = await self.store.get_persona(user_id)
        except TransientInfraError as e:
            log.warning("Persona lookup failed for %s, using defaults: %s", user_id, e)
            return None
        if persona is not None:
            await self.cache.set(Namespace.PERSONA, user_id, persona.to_dict(), self.ttl)
        return persona

    async def invalidate(self, user_id: str) -> None:
        await self.cache.delete(Namespace.PERSONA, user_id)


class WatchlistService:
    """Validated watchlist reads and writes with cache invalidation.

    Any write drops the cached watchlist and every stored digest of the user.
    """

    def __init__(
        self,
        store: WatchlistStore,
        cache: CacheService,
        digests: Optional[DigestStore] = None,
        ttl: int = WATCHLIST_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.cache = cache
        self.digests = digests
        self.ttl = ttl

    @staticmethod
    def build_entry(kind: Any, value: Any, weight: Any = None) -> WatchlistEntry:
        """Validate raw input into an entry; raises ValidationError."""
        if not kind or value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError("Missing required fields")
        try:
            kind = WatchlistKind(kind)
        except ValueError:
            raise ValidationError("Invalid kind", field="kind") from None

        if weight is None:
            return WatchlistEntry(kind=kind, value=str(value).strip())
        if isinstance(weight, bool) or not isinstance(weight, (int, float)):
            raise ValidationError("Weight must be a number", field="weight")
        if not MIN_WATCH_WEIGHT <= weight <= MAX_WATCH_WEIGHT:
            raise ValidationError(
                f"Weight must be between {MIN_WATCH_WEIGHT:g} and {MAX_WATCH_WEIGHT:g}",
                field="weight",
            )
        return WatchlistEntry(kind=kind, value=str(value).strip(), weight=float(weight))

    async def get_entries(self, user_id: str) -> list[WatchlistEntry]:
        cached = await self.cache.get(Namespace.WATCHLIST, user_id)
        if cached is not None:
            try:
                return [WatchlistEntry.from_dict(e) for e in cached]
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Ignoring malformed cached watchlist for %s: %s", user_id, e)

        entries = await self.store.list_entries(user_id)
        await self.cache.set(
            Namespace.WATCHLIST, user_id, [e.to_dict() for e in entries], self.ttl
        )
        return entries

    async def add(self, user_id: str, kind: Any, value: Any, weight: Any = None) -> WatchlistEntry:
        entry = self.build_entry(kind, value, weight)
        saved = await self.store.add_entry(user_id, entry)
        await self.invalidate(user_id)
        log.info("Added %s '%s' to watchlist of %s", entry.kind.value, entry.value, user_id)
        return saved

    async def update(self, user_id: str, kind: Any, value: Any, weight: Any) -> WatchlistEntry:
        if weight is None:
            raise ValidationError("Missing required fields", field="weight")
        entry = self.build_entry(kind, value, weight)
        saved = await self.store.update_entry(user_id, entry)
        await self.invalidate(user_id)
        return saved

    async def remove(self, user_id: str, kind: Any, value: Any) -> None:
        entry = self.build_entry(kind, value)
        if not await self.store.remove_entry(user_id, entry.kind, entry.value):
            raise NotFoundError(f"{entry.kind.value} '{entry.value}' is not in the watchlist")
        await self.invalidate(user_id)

    async def invalidate(self, user_id: str) -> None:
        await self.cache.delete(Namespace.WATCHLIST, user_id)
        await self.cache.delete_pattern(Namespace.DIGEST, f"{escape_glob(user_id)}:*")
        if self.digests is None:
            return
        try:
            await self.digests.delete_digests(user_id)
        except TransientInfraError as e:
            log.warning("Could not drop stored digests for %s: %s", user_id, e)

    async def on_external_write(
        self, user_id: str, entries: Optional[list[WatchlistEntry]] = None
    ) -> None:
        """Hook for writes made outside this service; primes the cache when entries are known."""
        await self.invalidate(user_id)
        if entries is not None:
            await self.cache.set(
                Namespace.WATCHLIST, user_id, [e.to_dict() for e in entries], self.ttl
            )


class DigestService:
    """Build personalized digests under a two-tier cache."""

    def __init__(
        self,
        candidates: CandidateStore,
        digests: DigestStore,
        watchlists: WatchlistService,
        personas: PersonaService,
        cache: CacheService,
        scoring: Optional[ScoringEngine] = None,
        pipeline: Optional[SummarizationPipeline] = None,
        rate_limiter: Optional[RateLimiter] = None,
        max_items: int = DEFAULT_MAX_ITEMS,
        candidate_limit: int = CANDIDATE_LIMIT,
        ttl_seconds: int = DIGEST_TTL_SECONDS,
        lookback: timedelta = DEFAULT_LOOKBACK,
        window_step: timedelta = DEFAULT_WINDOW_STEP,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.candidates = candidates
        self.digests = digests
        self.watchlists = watchlists
        self.personas = personas
        self.cache = cache
        self.scoring = scoring or ScoringEngine()
        self.pipeline = pipeline or SummarizationPipeline()
        self.rate_limiter = rate_limiter
        self.max_items = max_items
        self.candidate_limit = candidate_limit
        self.ttl_seconds = ttl_seconds
        self.lookback = lookback
        self.window_step = window_step
        self.clock = clock

    def resolve_window(
        self,
        persona: Optional[Persona],
        now: datetime,
        start: Any = None,
        end: Any = None,
    ) -> TimeWindow:
        """Explicit bounds win; otherwise the window runs from the last visit
        (or the lookback) to `now` snapped down to the window step.

        Default requests within one step share a slice key.
        """
        try:
            window_end = parse_datetime(end) if end else snap_down(now, self.window_step)
            if start:
                window_start = parse_datetime(start)
            elif persona is not None and persona.last_active is not None:
                # Activity stamped after the snapped end (clock skew) yields an empty window
                window_start = min(persona.last_active, window_end)
            else:
                window_start = window_end - self.lookback
            return TimeWindow(start=window_start, end=window_end)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid time window: {e}", field="window") from e

    def _page_size(self, max_items: Any) -> int:
        if max_items is None:
            return self.max_items
        if isinstance(max_items, bool) or not isinstance(max_items, int):
            raise ValidationError("maxItems must be an integer", field="maxItems")
        if not 1 <= max_items <= MAX_ITEMS_LIMIT:
            raise ValidationError(
                f"maxItems must be between 1 and {MAX_ITEMS_LIMIT}", field="maxItems"
            )
        return max_items

    async def generate_digest(
        self,
        user_id: str,
        start: Any = None,
        end: Any = None,
        max_items: Any = None,
        continue_token: Any = None,
    ) -> DigestResult:
        if not user_id:
            raise AuthorizationError("Unauthorized")
        page_size = self._page_size(max_items)
        now = self.clock()

        persona = await self.personas.get(user_id)
        window = self.resolve_window(persona, now, start, end)
        slice_key = window.slice_key
        offset = decode_continue_token(continue_token, slice_key) if continue_token else 0
        page_key = slice_key if offset == 0 else f"{slice_key}@{offset}"

        cached = await self._cached_digest(user_id, page_key, now)
        if cached is not None:
            return cached

        if self.rate_limiter is not None:
            verdict = await self.rate_limiter.check(f"digest:{user_id}")
            if not verdict.allowed:
                raise RateLimitExceeded(
                    "Too many digest recomputations", reset_in=verdict.reset_in
                )

        watchlist = await self.watchlists.get_entries(user_id)
        filters = CandidateFilters.from_watchlist(watchlist)
        items = await self.candidates.find_candidates(window, filters, self.candidate_limit)

        if not items:
            digest = DigestResult(
                highlights=[], total_items=0, time_window=window, summary=EMPTY_DIGEST_SUMMARY
            )
            await self._persist(user_id, page_key, digest, now)
            return digest

        ranked = self.scoring.rank(items, watchlist, persona, now)
        page = ranked[offset:offset + page_size]
        highlights = await self._summarize(page, watchlist, persona)

        next_offset = offset + page_size
        token = encode_continue_token(slice_key, next_offset) if next_offset < len(ranked) else None
        digest = DigestResult(
            highlights=highlights,
            total_items=len(ranked),
            time_window=window,
            summary=digest_summary(highlights, len(ranked)),
            continue_token=token,
        )
        await self._persist(user_id, page_key, digest, now)
        log.info(
            "Digest for %s: %d highlights from %d items",
            user_id, len(highlights), len(ranked),
            extra={"user_id": user_id, "slice_key": page_key},
        )
        return digest

    async def _cached_digest(
        self, user_id: str, page_key: str, now: datetime
    ) -> Optional[DigestResult]:
        cache_key = f"{user_id}:{page_key}"
        cached = await self.cache.get(Namespace.DIGEST, cache_key)
        if cached is not None:
            try:
                return DigestResult.from_dict(cached)
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Ignoring malformed cached digest %s: %s", cache_key, e)

        try:
            stored = await self.digests.get_digest(user_id, page_key, now)
        except (TransientInfraError, KeyError, TypeError, ValueError) as e:
            log.warning("Stored digest lookup failed for %s: %s", cache_key, e)
            return None
        if stored is None:
            return None

        # Backfill the fast tier only for the rest of the stored digest's life
        ttl = stored.ttl_seconds(now)
        if ttl > 0:
            await self.cache.set(Namespace.DIGEST, cache_key, stored.digest.to_dict(), ttl)
        return stored.digest

    async def _summarize(
        self,
        page: list[ScoredItem],
        watchlist: list[WatchlistEntry],
        persona: Optional[Persona],
    ) -> list[ScoredItem]:
        tldrs = await asyncio.gather(*(
            self.pipeline.generate_tldr(s.item.content, list(s.item.tags), watchlist)
            for s in page
        ))
        actions = HighlightActions(can_ping=persona.pings_allowed if persona else False)
        return [
            ScoredItem(
                item=s.item,
                score=s.score,
                provenance=s.provenance,
                tldr=tldr,
                actions=actions,
            )
            for s, tldr in zip(page, tldrs)
        ]

    async def _persist(
        self, user_id: str, page_key: str, digest: DigestResult, now: datetime
    ) -> None:
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        try:
            await self.digests.upsert_digest(user_id, page_key, digest, expires_at)
        except TransientInfraError as e:
            log.warning("Could not store digest %s:%s: %s", user_id, page_key, e)
        await self.cache.set(
            Namespace.DIGEST, f"{user_id}:{page_key}", digest.to_dict(), self.ttl_seconds
        )


class HealthService:
    """Combine cache and worker state into one status report."""

    def __init__(self, cache: CacheService, worker: Optional[WorkerPool] = None) -> None:
        self.cache = cache
        self.worker = worker

    async def check(self) -> dict[str, Any]:
        configured = self.cache.backend is not None
        cache_healthy = await self.cache.health_check()
        cache_report: dict[str, Any] = {
            "status": "disabled" if not configured else ("up" if cache_healthy else "down"),
            "healthy": cache_healthy,
            "stats": await self.cache.stats(),
        }

        if self.worker is None:
            worker_report: dict[str, Any] = {"status": "disabled", "running": False}
        else:
            worker_report = await self.worker.health()
            worker_report["status"] = "up" if worker_report["running"] else "down"

        degraded = (configured and not cache_healthy) or worker_report["status"] == "down"
        return {
            "status": "degraded" if degraded else "healthy",
            "timestamp": utcnow().isoformat(),
            "services": {"cache": cache_report, "worker": worker_report},
        }
