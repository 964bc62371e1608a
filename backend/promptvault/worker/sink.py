"""Downstream persistence of normalized prompts.

Each prompt is written on its own so that one bad record only costs that
record. A prompt is keyed by its session and position in the export, so a
redelivered work item stores nothing twice.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from promptvault.db.connection import Database
from promptvault.errors import PersistenceFailure
from promptvault.models import ImportSession
from promptvault.parsers.models import NormalizedPrompt


class PromptSink(ABC):
    @abstractmethod
    async def save(self, session: ImportSession, prompt: NormalizedPrompt) -> None:
        """Persist one prompt. Raises PersistenceFailure."""
        ...


class SqlitePromptSink(PromptSink):
    def __init__(self, db: Database) -> None:
        self._db = db

    async def save(self, session: ImportSession, prompt: NormalizedPrompt) -> None:
        try:
            await self._db.execute(
                """
                INSERT INTO imported_prompts
                    (prompt_id, session_id, user_id, platform, sequence, title,
                     content, response, metadata, original_timestamp, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (session_id, sequence) DO NOTHING
                """,
                (
                    prompt.id,
                    session.id,
                    session.user_id,
                    prompt.source,
                    prompt.sequence,
                    prompt.title or "Imported Prompt",
                    prompt.content,
                    prompt.response,
                    json.dumps(prompt.metadata, default=str),
                    prompt.timestamp.isoformat() if prompt.timestamp else None,
                    datetime.now(UTC).isoformat(),
                ),
            )
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise PersistenceFailure(f"Could not store prompt {prompt.id}: {e}") from e

    async def count_for_session(self, session_id: str) -> int:
        return await self._db.fetchval(
            "SELECT COUNT(*) FROM imported_prompts WHERE session_id = ?", (session_id,)
        )
