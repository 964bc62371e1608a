"""Progress store: latest ProgressSnapshot per session, with a TTL.

Every write replaces the previous snapshot and refreshes its expiry; no
history is kept. Writes are also published on a per-session channel for
consumers that can hold a subscription open. The stream endpoint polls
instead, since not every deployment can keep one open.

Key format:      import:progress:{session_id}
Channel format:  import:{session_id}
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any

from pydantic import ValidationError

from promptvault.models import ImportSession, ProgressSnapshot, SessionStatus

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


def progress_key(session_id: str) -> str:
    return f"import:progress:{session_id}"


def progress_channel(session_id: str) -> str:
    return f"import:{session_id}"


def _decode(raw: Any) -> ProgressSnapshot | None:
    """Deserialize a stored snapshot; unreadable values count as absent."""
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return ProgressSnapshot.model_validate(json.loads(raw))
    except (ValueError, ValidationError):
        logger.warning("Discarding unreadable progress snapshot: %.100r", raw)
        return None


class ProgressStore(ABC):
    """Abstract snapshot store."""

    @abstractmethod
    async def write(self, snapshot: ProgressSnapshot) -> None:
        """Overwrite the session's snapshot and refresh its TTL."""
        ...

    @abstractmethod
    async def read(self, session_id: str) -> ProgressSnapshot | None:
        ...

    @abstractmethod
    async def clear(self, session_id: str) -> None:
        ...

    @abstractmethod
    def subscribe(self, session_id: str) -> AsyncIterator[ProgressSnapshot]:
        """Yield snapshots as they are written, until the consumer stops."""
        ...

    async def close(self) -> None:
        return None


class MemoryProgressStore(ProgressStore):
    """In-process store for single-process deployments and tests."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._ttl = ttl_seconds
        self._entries: dict[str, tuple[float, str]] = {}
        self._subscribers: dict[str, set[asyncio.Queue[str]]] = defaultdict(set)

    async def write(self, snapshot: ProgressSnapshot) -> None:
        payload = snapshot.to_json()
        now = time.monotonic()
        self._purge(now)
        self._entries[snapshot.session_id] = (now + self._ttl, payload)
        for queue in self._subscribers.get(snapshot.session_id, ()):
            queue.put_nowait(payload)

    async def read(self, session_id: str) -> ProgressSnapshot | None:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        expires_at, payload = entry
        if time.monotonic() >= expires_at:
            self._entries.pop(session_id, None)
            return None
        return _decode(payload)

    async def clear(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def _purge(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]

    async def subscribe(self, session_id: str) -> AsyncIterator[ProgressSnapshot]:
        queue: asyncio.Queue[str] = asyncio.Queue()
        self._subscribers[session_id].add(queue)
        try:
            while True:
                snapshot = _decode(await queue.get())
                if snapshot is not None:
                    yield snapshot
        finally:
            self._subscribers[session_id].discard(queue)
            if not self._subscribers[session_id]:
                del self._subscribers[session_id]


class RedisProgressStore(ProgressStore):
    """Store backed by an async Redis client (redis.asyncio compatible).

    Uses only SETEX, GET, DEL and PUBLISH/SUBSCRIBE so it runs against any
    Redis 6+ deployment.
    """

    def __init__(self, redis: Any, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def write(self, snapshot: ProgressSnapshot) -> None:
        payload = snapshot.to_json()
        await self._redis.setex(progress_key(snapshot.session_id), self._ttl, payload)
        await self._redis.publish(progress_channel(snapshot.session_id), payload)

    async def read(self, session_id: str) -> ProgressSnapshot | None:
        return _decode(await self._redis.get(progress_key(session_id)))

    async def clear(self, session_id: str) -> None:
        await self._redis.delete(progress_key(session_id))

    async def subscribe(self, session_id: str) -> AsyncIterator[ProgressSnapshot]:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(progress_channel(session_id))
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                snapshot = _decode(message.get("data"))
                if snapshot is not None:
                    yield snapshot
        finally:
            await pubsub.unsubscribe(progress_channel(session_id))
            await pubsub.aclose()

    async def close(self) -> None:
        await self._redis.aclose()


def snapshot_from_session(session: ImportSession) -> ProgressSnapshot:
    """Rebuild a snapshot from the durable record of a terminal session."""
    if session.status == SessionStatus.COMPLETED:
        return ProgressSnapshot(
            session_id=session.id,
            status=session.status,
            progress=100,
            message="Import completed successfully!",
            metadata={
                "total": session.total_prompts,
                "processed": session.processed_prompts,
                "failed": session.failed_prompts,
            },
        )
    if session.status == SessionStatus.FAILED:
        return ProgressSnapshot(
            session_id=session.id,
            status=session.status,
            progress=0,
            message=session.error or "Import failed",
        )
    return ProgressSnapshot(
        session_id=session.id,
        status=session.status,
        progress=0,
        message="Waiting for processing to start...",
    )
