"""SQLite system of record for local runs.

Implements every store interface the engine reads or writes. Timestamps are
stored as UTC epoch seconds so range queries compare numerically.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar, Union

from digest_engine.core.entities import (
    CandidateFilters,
    CandidateItem,
    DigestResult,
    Persona,
    StoredDigest,
    TimeWindow,
    WatchlistEntry,
    WatchlistKind,
)
from digest_engine.core.errors import ConflictError, NotFoundError, TransientInfraError
from digest_engine.core.interfaces import (
    CandidateStore,
    DigestStore,
    JobStore,
    PersonaStore,
    PingStore,
    WatchlistStore,
)
from digest_engine.core.jobs import Job, JobFailure, JobType

log = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS candidates (
    id          TEXT PRIMARY KEY,
    author      TEXT NOT NULL,
    title       TEXT NOT NULL,
    content     TEXT NOT NULL,
    created_at  REAL NOT NULL,
    tags        TEXT NOT NULL DEFAULT '[]',
    category    TEXT NOT NULL DEFAULT '',
    visibility  TEXT
);
CREATE INDEX IF NOT EXISTS idx_candidates_created_at ON candidates (created_at);

CREATE TABLE IF NOT EXISTS personas (
    user_id         TEXT PRIMARY KEY,
    last_active     REAL,
    autonomy_flags  TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS watchlists (
    user_id     TEXT NOT NULL,
    kind        TEXT NOT NULL,
    value       TEXT NOT NULL,
    weight      REAL NOT NULL DEFAULT 1.0,
    created_at  REAL NOT NULL,
    PRIMARY KEY (user_id, kind, value)
);

CREATE TABLE IF NOT EXISTS digest_cache (
    user_id         TEXT NOT NULL,
    time_slice_key  TEXT NOT NULL,
    summary_json    TEXT NOT NULL,
    expires_at      REAL NOT NULL,
    PRIMARY KEY (user_id, time_slice_key)
);

CREATE TABLE IF NOT EXISTS jobs (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    id          TEXT NOT NULL UNIQUE,
    type        TEXT NOT NULL,
    priority    INTEGER NOT NULL,
    body        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_type_priority ON jobs (type, priority DESC, seq);

CREATE TABLE IF NOT EXISTS pings (
    id      TEXT PRIMARY KEY,
    status  TEXT NOT NULL DEFAULT 'pending'
);

CREATE TABLE IF NOT EXISTS agent_actions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    persona_id  TEXT NOT NULL,
    action_type TEXT NOT NULL,
    target_id   TEXT NOT NULL,
    metadata    TEXT NOT NULL DEFAULT '{}',
    created_at  REAL NOT NULL
);
"""


def _epoch(value: datetime) -> float:
    return value.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SQLiteStore(
    CandidateStore, PersonaStore, WatchlistStore, DigestStore, JobStore, PingStore
):
    """Single-file store; calls run in a worker thread behind one lock."""

    def __init__(self, path: Union[str, Path] = ":memory:") -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _run(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            rows = cursor.fetchall()
            self._conn.commit()
            return rows

    async def _in_thread(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.OperationalError as e:
            # Locked or unreadable database file
            raise TransientInfraError(f"Database unavailable: {e}") from e

    async def _execute(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return await self._in_thread(self._run, sql, params)

    # Seeding helpers (the platform owns these tables in production)

    async def add_candidate(self, item: CandidateItem) -> None:
        await self._execute(
            "INSERT OR REPLACE INTO candidates "
            "(id, author, title, content, created_at, tags, category, visibility) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                item.id,
                item.author,
                item.title,
                item.content,
                _epoch(item.created_at),
                json.dumps(list(item.tags)),
                item.category,
                item.visibility.value if item.visibility else None,
            ),
        )

    async def upsert_persona(self, persona: Persona) -> None:
        await self._execute(
            "INSERT OR REPLACE INTO personas (user_id, last_active, autonomy_flags) "
            "VALUES (?, ?, ?)",
            (
                persona.user_id,
                _epoch(persona.last_active) if persona.last_active else None,
                json.dumps(persona.autonomy_flags),
            ),
        )

    async def add_ping(self, ping_id: str) -> None:
        await self._execute("INSERT OR IGNORE INTO pings (id) VALUES (?)", (ping_id,))

    async def get_ping_status(self, ping_id: str) -> Optional[str]:
        rows = await self._execute("SELECT status FROM pings WHERE id = ?", (ping_id,))
        return rows[0]["status"] if rows else None

    async def list_actions(self, action_type: Optional[str] = None) -> list[dict[str, Any]]:
        if action_type:
            rows = await self._execute(
                "SELECT * FROM agent_actions WHERE action_type = ? ORDER BY id", (action_type,)
            )
        else:
            rows = await self._execute("SELECT * FROM agent_actions ORDER BY id")
        return [
            {
                "persona_id": row["persona_id"],
                "action_type": row["action_type"],
                "target_id": row["target_id"],
                "metadata": json.loads(row["metadata"]),
                "created_at": _from_epoch(row["created_at"]),
            }
            for row in rows
        ]

    # CandidateStore

    async def find_candidates(
        self, window: TimeWindow, filters: CandidateFilters, limit: int
    ) -> list[CandidateItem]:
        rows = await self._execute(
            "SELECT * FROM candidates WHERE created_at >= ? AND created_at <= ? "
            "ORDER BY created_at DESC, id",
            (_epoch(window.start), _epoch(window.end)),
        )
        items: list[CandidateItem] = []
        for row in rows:
            item = CandidateItem(
                id=row["id"],
                author=row["author"],
                title=row["title"],
                content=row["content"],
                created_at=_from_epoch(row["created_at"]),
                tags=tuple(json.loads(row["tags"])),
                category=row["category"],
                visibility=row["visibility"],
            )
            if filters.matches(item):
                items.append(item)
                if len(items) >= limit:
                    break
        return items

    # PersonaStore

    async def get_persona(self, user_id: str) -> Optional[Persona]:
        rows = await self._execute("SELECT * FROM personas WHERE user_id = ?", (user_id,))
        if not rows:
            return None
        row = rows[0]
        return Persona(
            user_id=row["user_id"],
            last_active=_from_epoch(row["last_active"]) if row["last_active"] is not None else None,
            autonomy_flags=json.loads(row["autonomy_flags"]),
        )

    # WatchlistStore

    async def list_entries(self, user_id: str) -> list[WatchlistEntry]:
        rows = await self._execute(
            "SELECT kind, value, weight FROM watchlists WHERE user_id = ? "
            "ORDER BY weight DESC, created_at DESC",
            (user_id,),
        )
        return [
            WatchlistEntry(kind=WatchlistKind(row["kind"]), value=row["value"], weight=row["weight"])
            for row in rows
        ]

    async def add_entry(self, user_id: str, entry: WatchlistEntry) -> WatchlistEntry:
        try:
            await self._execute(
                "INSERT INTO watchlists (user_id, kind, value, weight, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (user_id, entry.kind.value, entry.value, entry.weight,
                 datetime.now(timezone.utc).timestamp()),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"{entry.kind.value} '{entry.value}' is already in the watchlist") from e
        return entry

    async def update_entry(self, user_id: str, entry: WatchlistEntry) -> WatchlistEntry:
        rows = await self._execute(
            "UPDATE watchlists SET weight = ? WHERE user_id = ? AND kind = ? AND value = ? "
            "RETURNING kind, value, weight",
            (entry.weight, user_id, entry.kind.value, entry.value),
        )
        if not rows:
            raise NotFoundError(f"{entry.kind.value} '{entry.value}' is not in the watchlist")
        return entry

    async def remove_entry(self, user_id: str, kind: WatchlistKind, value: str) -> bool:
        rows = await self._execute(
            "DELETE FROM watchlists WHERE user_id = ? AND kind = ? AND value = ? RETURNING value",
            (user_id, WatchlistKind(kind).value, value),
        )
        return bool(rows)

    # DigestStore

    async def get_digest(
        self, user_id: str, slice_key: str, now: datetime
    ) -> Optional[StoredDigest]:
        rows = await self._execute(
            "SELECT summary_json, expires_at FROM digest_cache "
            "WHERE user_id = ? AND time_slice_key = ?",
            (user_id, slice_key),
        )
        if not rows or rows[0]["expires_at"] <= _epoch(now):
            return None
        return StoredDigest(
            digest=DigestResult.from_dict(json.loads(rows[0]["summary_json"])),
            expires_at=_from_epoch(rows[0]["expires_at"]),
        )

    async def upsert_digest(
        self, user_id: str, slice_key: str, digest: DigestResult, expires_at: datetime
    ) -> None:
        await self._execute(
            "INSERT OR REPLACE INTO digest_cache (user_id, time_slice_key, summary_json, expires_at) "
            "VALUES (?, ?, ?, ?)",
            (user_id, slice_key, json.dumps(digest.to_dict()), _epoch(expires_at)),
        )

    async def delete_digests(self, user_id: str) -> int:
        rows = await self._execute(
            "DELETE FROM digest_cache WHERE user_id = ? RETURNING time_slice_key", (user_id,)
        )
        return len(rows)

    # JobStore

    async def insert_job(self, job: Job) -> None:
        await self._execute(
            "INSERT OR REPLACE INTO jobs (id, type, priority, body) VALUES (?, ?, ?, ?)",
            (job.id, job.type.value, job.priority, json.dumps(job.to_dict())),
        )

    def _pop_job(self, job_type: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT seq, body FROM jobs WHERE type = ? ORDER BY priority DESC, seq LIMIT 1",
                (job_type,),
            ).fetchone()
            if row is None:
                return None
            self._conn.execute("DELETE FROM jobs WHERE seq = ?", (row["seq"],))
            self._conn.commit()
            return row["body"]

    async def pop_job(self, job_type: JobType) -> Optional[Job]:
        body = await self._in_thread(self._pop_job, JobType(job_type).value)
        return Job.from_dict(json.loads(body)) if body else None

    async def count_jobs(self, job_type: Optional[JobType] = None) -> int:
        if job_type is None:
            rows = await self._execute("SELECT COUNT(*) AS n FROM jobs")
        else:
            rows = await self._execute(
                "SELECT COUNT(*) AS n FROM jobs WHERE type = ?", (JobType(job_type).value,)
            )
        return rows[0]["n"]

    async def record_failure(self, failure: JobFailure) -> None:
        await self.record_action(
            persona_id="system",
            action_type="job_failed",
            target_id=failure.job_id,
            metadata={
                "job_type": failure.job_type.value,
                "payload": failure.payload,
                "attempts": failure.attempts,
                "error": failure.error,
                "failed_at": failure.failed_at.isoformat(),
            },
        )
        log.error(
            "Job %s (%s) failed permanently after %d attempts: %s",
            failure.job_id, failure.job_type.value, failure.attempts, failure.error,
        )

    # PingStore

    async def mark_ping_sent(self, ping_id: str) -> None:
        rows = await self._execute(
            "UPDATE pings SET status = 'sent' WHERE id = ? RETURNING id", (ping_id,)
        )
        if not rows:
            raise NotFoundError(f"Ping {ping_id} does not exist")

    async def record_action(
        self, persona_id: str, action_type: str, target_id: str, metadata: dict
    ) -> None:
        await self._execute(
            "INSERT INTO agent_actions (persona_id, action_type, target_id, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (persona_id, action_type, target_id, json.dumps(metadata, default=str),
             datetime.now(timezone.utc).timestamp()),
        )
