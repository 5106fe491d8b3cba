"""Inbound request handlers mapping service results to status-coded responses.

Framework-neutral: a web layer passes the authenticated user id and the
decoded JSON body, and serializes the returned `Response`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from digest_engine.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RateLimitExceeded,
    ValidationError,
)
from digest_engine.use_cases import DigestService, HealthService, WatchlistService

log = logging.getLogger(__name__)

WATCHLIST_ACTIONS = ("add", "remove", "update")


@dataclass
class Response:
    status: int
    body: dict[str, Any] = field(default_factory=dict)


def error(status: int, message: str, **extra: Any) -> Response:
    return Response(status=status, body={"error": message, **extra})


class DigestAPI:
    """Digest, watchlist and health endpoints."""

    def __init__(
        self,
        digests: DigestService,
        watchlists: WatchlistService,
        health: HealthService,
    ) -> None:
        self.digests = digests
        self.watchlists = watchlists
        self.health = health

    async def post_digest(self, user_id: Optional[str], request: Any) -> Response:
        if not user_id:
            return error(401, "Unauthorized")
        if request is None:
            request = {}
        if not isinstance(request, dict):
            return error(400, "Request body must be an object")

        try:
            digest = await self.digests.generate_digest(
                user_id,
                start=request.get("windowStart"),
                end=request.get("windowEnd"),
                max_items=request.get("maxItems"),
                continue_token=request.get("continueToken"),
            )
        except AuthorizationError:
            return error(401, "Unauthorized")
        except ValidationError as e:
            return error(400, str(e))
        except RateLimitExceeded as e:
            return error(429, str(e), retry_after=e.reset_in)
        except Exception:
            log.exception("Digest generation failed for %s", user_id, extra={"user_id": user_id})
            return error(500, "Failed to generate digest")
        return Response(status=200, body={"digest": digest.to_dict()})

    async def get_watchlist(self, user_id: Optional[str]) -> Response:
        if not user_id:
            return error(401, "Unauthorized")
        try:
            entries = await self.watchlists.get_entries(user_id)
        except Exception:
            log.exception("Watchlist retrieval failed for %s", user_id, extra={"user_id": user_id})
            return error(500, "Failed to retrieve watchlists")
        return Response(status=200, body={"watchlists": [e.to_dict() for e in entries]})

    async def post_watchlist(self, user_id: Optional[str], request: Any) -> Response:
        if not user_id:
            return error(401, "Unauthorized")
        if not isinstance(request, dict):
            return error(400, "Request body must be an object")

        action = request.get("action")
        if action not in WATCHLIST_ACTIONS:
            return error(400, "Invalid action")
        kind, value, weight = request.get("kind"), request.get("value"), request.get("weight")

        try:
            if action == "add":
                entry = await self.watchlists.add(user_id, kind, value, weight)
                return Response(status=200, body={"success": True, "entry": entry.to_dict()})
            if action == "update":
                entry = await self.watchlists.update(user_id, kind, value, weight)
                return Response(status=200, body={"success": True, "entry": entry.to_dict()})
            await self.watchlists.remove(user_id, kind, value)
            return Response(status=200, body={"success": True})
        except ValidationError as e:
            return error(400, str(e))
        except ConflictError:
            return error(409, "Item already in watchlist")
        except NotFoundError as e:
            return error(404, str(e))
        except Exception:
            log.exception("Watchlist %s failed for %s", action, user_id, extra={"user_id": user_id})
            return error(500, f"Failed to {action} watchlist entry")

    async def get_health(self) -> Response:
        try:
            report = await self.health.check()
        except Exception as e:
            log.exception("Health check failed")
            return error(500, str(e), status="unhealthy")
        return Response(status=200, body=report)
