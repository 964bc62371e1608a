"""SessionRegistry: durable record of every import attempt.

The registry is the source of truth for session status. Only the worker
moves a session out of `processing`, and `finalize` is guarded by a
check-and-set on the current status so duplicate deliveries cannot
overwrite the first terminal outcome.
"""

import json
import logging
from datetime import UTC, datetime
from uuid import uuid4

from promptvault.db.connection import Database
from promptvault.models import (
    Completed,
    Failed,
    FileDescriptor,
    ImportSession,
    Platform,
    SessionOutcome,
    SessionStatus,
)

logger = logging.getLogger(__name__)


class SessionNotFoundError(Exception):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Import session not found: {session_id}")


class SessionForbiddenError(Exception):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Import session {session_id} belongs to another user")


class SessionStateError(Exception):
    """The session is not in a status that allows the requested transition."""


class SessionRegistry:
    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self, user_id: str, platform: Platform, file: FileDescriptor
    ) -> str:
        """Create a pending session and return its id."""
        session_id = str(uuid4())
        await self._db.execute(
            """
            INSERT INTO import_sessions
                (session_id, user_id, platform, status, file_name, file_size,
                 file_type, blob_url, started_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                user_id,
                Platform(platform).value,
                SessionStatus.PENDING.value,
                file.name,
                file.size,
                file.type,
                file.url,
                datetime.now(UTC).isoformat(),
            ),
        )
        logger.info("Created import session %s (%s) for user %s", session_id, platform, user_id)
        return session_id

    async def get(self, session_id: str) -> ImportSession:
        """Get a session. Raises SessionNotFoundError."""
        row = await self._db.fetchone(
            "SELECT * FROM import_sessions WHERE session_id = ?", (session_id,)
        )
        if row is None:
            raise SessionNotFoundError(session_id)
        return self._row_to_session(row)

    async def get_owned(self, session_id: str, user_id: str) -> ImportSession:
        """Get a session on behalf of a caller. Raises SessionForbiddenError."""
        session = await self.get(session_id)
        if session.user_id != user_id:
            raise SessionForbiddenError(session_id)
        return session

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[ImportSession]:
        rows = await self._db.fetchall(
            """
            SELECT * FROM import_sessions WHERE user_id = ?
            ORDER BY started_at DESC LIMIT ?
            """,
            (user_id, limit),
        )
        return [self._row_to_session(row) for row in rows]

    async def attach_file(self, session_id: str, user_id: str, blob_url: str) -> ImportSession:
        """Record the uploaded blob and move the session to `processing`.

        Raises SessionNotFoundError, SessionForbiddenError, or
        SessionStateError if the session has already left `pending`.
        """
        await self.get_owned(session_id, user_id)
        updated = await self._db.update(
            """
            UPDATE import_sessions SET blob_url = ?, status = ?
            WHERE session_id = ? AND status = ?
            """,
            (
                blob_url,
                SessionStatus.PROCESSING.value,
                session_id,
                SessionStatus.PENDING.value,
            ),
        )
        if updated == 0:
            current = await self.get(session_id)
            raise SessionStateError(
                f"Session {session_id} is {current.status.value}, expected pending"
            )
        return await self.get(session_id)

    async def finalize(self, session_id: str, outcome: SessionOutcome) -> bool:
        """Move a processing session to its terminal status.

        Returns True if this call made the transition. A session that is no
        longer `processing` is left untouched and False is returned.
        """
        completed_at = datetime.now(UTC).isoformat()
        if isinstance(outcome, Completed):
            updated = await self._db.update(
                """
                UPDATE import_sessions
                SET status = ?, total_prompts = ?, processed_prompts = ?,
                    failed_prompts = ?, metadata = ?, completed_at = ?
                WHERE session_id = ? AND status = ?
                """,
                (
                    SessionStatus.COMPLETED.value,
                    outcome.total,
                    outcome.processed,
                    outcome.failed,
                    json.dumps(outcome.metadata),
                    completed_at,
                    session_id,
                    SessionStatus.PROCESSING.value,
                ),
            )
        elif isinstance(outcome, Failed):
            updated = await self._db.update(
                """
                UPDATE import_sessions
                SET status = ?, error = ?, completed_at = ?
                WHERE session_id = ? AND status = ?
                """,
                (
                    SessionStatus.FAILED.value,
                    outcome.error_message,
                    completed_at,
                    session_id,
                    SessionStatus.PROCESSING.value,
                ),
            )
        else:
            raise TypeError(f"Unknown session outcome: {outcome!r}")

        if updated == 1:
            logger.info("Session %s finalized as %s", session_id, type(outcome).__name__.lower())
            return True

        status = await self._db.fetchval(
            "SELECT status FROM import_sessions WHERE session_id = ?", (session_id,)
        )
        logger.warning(
            "Ignoring finalize(%s) for session %s in status %s",
            type(outcome).__name__, session_id, status or "missing",
        )
        return False

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_session(row) -> ImportSession:
        return ImportSession(
            id=row["session_id"],
            user_id=row["user_id"],
            platform=row["platform"],
            status=row["status"],
            file=FileDescriptor(
                name=row["file_name"],
                size=row["file_size"],
                type=row["file_type"],
                url=row["blob_url"],
            ),
            total_prompts=row["total_prompts"],
            processed_prompts=row["processed_prompts"],
            failed_prompts=row["failed_prompts"],
            error=row["error"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )
