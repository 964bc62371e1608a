"""Server-sent event stream of a session's progress snapshots.

Polls the progress store on a fixed interval and emits each snapshot that
differs from the last one sent. While the stored snapshot is not terminal the
session record is checked too, so a lost terminal write still ends the
stream. The stream ends on a terminal snapshot, on client disconnect, or
after a single error frame if the store cannot be read.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from promptvault.models import ProgressSnapshot
from promptvault.progress.store import ProgressStore, snapshot_from_session
from promptvault.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)


def sse_frame(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


async def _current_snapshot(
    session_id: str, store: ProgressStore, registry: SessionRegistry
) -> ProgressSnapshot | None:
    snapshot = await store.read(session_id)
    if snapshot is not None and snapshot.is_terminal:
        return snapshot
    # The terminal snapshot may have expired or never been written; a finished
    # session still has an answer in the registry.
    session = await registry.get(session_id)
    if session.status.is_terminal:
        return snapshot_from_session(session)
    return snapshot


async def stream_progress(
    session_id: str,
    store: ProgressStore,
    registry: SessionRegistry,
    *,
    poll_interval: float = 1.0,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[str]:
    """Async generator that yields SSE-formatted progress frames."""
    last_sent: str | None = None
    first = True
    try:
        while True:
            if not first:
                await asyncio.sleep(poll_interval)
            first = False
            if is_disconnected is not None and await is_disconnected():
                logger.debug("Progress client for %s disconnected", session_id)
                return

            try:
                snapshot = await _current_snapshot(session_id, store, registry)
            except Exception as e:
                logger.exception("Progress polling failed for session %s", session_id)
                error = {"sessionId": session_id, "error": str(e) or e.__class__.__name__}
                yield sse_frame("error", json.dumps(error))
                return

            if snapshot is None:
                continue
            payload = snapshot.to_json()
            if payload != last_sent:
                last_sent = payload
                yield sse_frame("progress", payload)
            if snapshot.is_terminal:
                return
    except asyncio.CancelledError:
        logger.debug("Progress stream for %s cancelled", session_id)
        raise
