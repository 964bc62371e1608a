"""Database schema DDL. All tables use CREATE IF NOT EXISTS for idempotency."""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS import_sessions (
    session_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    platform TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    file_name TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    file_type TEXT NOT NULL,
    blob_url TEXT,
    total_prompts INTEGER NOT NULL DEFAULT 0,
    processed_prompts INTEGER NOT NULL DEFAULT 0,
    failed_prompts INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    metadata TEXT,
    started_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_import_sessions_user_id ON import_sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_import_sessions_status ON import_sessions(status);

CREATE TABLE IF NOT EXISTS imported_prompts (
    prompt_id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    platform TEXT NOT NULL,
    sequence INTEGER NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    response TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    original_timestamp TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (session_id) REFERENCES import_sessions(session_id)
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_imported_prompts_session_sequence
    ON imported_prompts(session_id, sequence);
CREATE INDEX IF NOT EXISTS idx_imported_prompts_user_id ON imported_prompts(user_id);
"""
