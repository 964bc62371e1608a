"""Integration tests for database connection and schema."""

import os
import tempfile

from promptvault.db.connection import Database


class TestDatabaseConnection:
    async def test_connect_creates_tables(self, db):
        rows = await db.fetchall("SELECT name FROM sqlite_master WHERE type='table'")
        table_names = {row["name"] for row in rows}
        assert {"import_sessions", "imported_prompts"} <= table_names

    async def test_wal_mode_on_file_database(self):
        """File-based database uses WAL journal mode."""
        with tempfile.TemporaryDirectory() as tmpdir:
            db = await Database.connect(os.path.join(tmpdir, "test.db"))
            try:
                assert await db.fetchval("PRAGMA journal_mode") == "wal"
            finally:
                await db.close()

    async def test_foreign_keys_enabled(self, db):
        assert await db.fetchval("PRAGMA foreign_keys") == 1

    async def test_schema_idempotent(self, db):
        await db._ensure_schema()
        assert await db.fetchval("SELECT COUNT(*) FROM import_sessions") == 0

    async def test_update_reports_affected_rows(self, db):
        await db.execute(
            "INSERT INTO import_sessions (session_id, user_id, platform, file_name, file_size,"
            " file_type, started_at) VALUES ('s1', 'u', 'file', 'a.txt', 1, 'text/plain', 'now')"
        )
        sql = "UPDATE import_sessions SET status = 'processing' WHERE session_id = ? AND status = 'pending'"
        assert await db.update(sql, ("s1",)) == 1
        assert await db.update(sql, ("s1",)) == 0

    async def test_fetchval_without_rows(self, db):
        assert await db.fetchval("SELECT status FROM import_sessions WHERE session_id = 'x'") is None
