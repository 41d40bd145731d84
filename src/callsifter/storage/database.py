"""SQLite database schema and connection management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Customer accounts calls are grouped under
CREATE TABLE IF NOT EXISTS accounts (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    name          TEXT NOT NULL,
    domain        TEXT NOT NULL UNIQUE,
    metadata_json TEXT,
    created_at    TEXT DEFAULT (datetime('now')),
    updated_at    TEXT DEFAULT (datetime('now'))
);

-- One row per ingested call; identity is (platform, call_id)
CREATE TABLE IF NOT EXISTS transcripts (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    platform       TEXT NOT NULL,
    call_id        TEXT NOT NULL,
    account_id     INTEGER REFERENCES accounts(id) ON DELETE SET NULL,
    title          TEXT NOT NULL,
    start_time     TEXT NOT NULL,
    end_time       TEXT NOT NULL,
    duration       INTEGER DEFAULT 0,
    full_text      TEXT NOT NULL DEFAULT '',
    recording_url  TEXT,
    attendees_json TEXT,
    ai_content     TEXT,
    confidence     REAL,
    rule_name      TEXT,
    source         TEXT NOT NULL DEFAULT 'batch',
    processed_at   TEXT,
    created_at     TEXT DEFAULT (datetime('now')),
    updated_at     TEXT DEFAULT (datetime('now')),
    UNIQUE(platform, call_id)
);

-- Ordered speaker-attributed spans
CREATE TABLE IF NOT EXISTS transcript_segments (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    transcript_id   INTEGER NOT NULL REFERENCES transcripts(id) ON DELETE CASCADE,
    sequence_number INTEGER NOT NULL,
    speaker         TEXT NOT NULL,
    speaker_email   TEXT,
    text            TEXT NOT NULL,
    start_ms        INTEGER NOT NULL,
    end_ms          INTEGER NOT NULL,
    confidence      REAL,
    UNIQUE(transcript_id, sequence_number)
);

-- Full-text search on transcripts
CREATE VIRTUAL TABLE IF NOT EXISTS transcripts_fts USING fts5(
    title,
    full_text,
    content=transcripts,
    content_rowid=id,
    tokenize='porter unicode61'
);

CREATE TRIGGER IF NOT EXISTS transcripts_ai AFTER INSERT ON transcripts BEGIN
    INSERT INTO transcripts_fts(rowid, title, full_text)
    VALUES (new.id, new.title, new.full_text);
END;

CREATE TRIGGER IF NOT EXISTS transcripts_ad AFTER DELETE ON transcripts BEGIN
    INSERT INTO transcripts_fts(transcripts_fts, rowid, title, full_text)
    VALUES ('delete', old.id, old.title, old.full_text);
END;

CREATE TRIGGER IF NOT EXISTS transcripts_au AFTER UPDATE OF title, full_text ON transcripts BEGIN
    INSERT INTO transcripts_fts(transcripts_fts, rowid, title, full_text)
    VALUES ('delete', old.id, old.title, old.full_text);
    INSERT INTO transcripts_fts(rowid, title, full_text)
    VALUES (new.id, new.title, new.full_text);
END;

-- Account reassignment audit trail
CREATE TABLE IF NOT EXISTS association_audit (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    transcript_id  INTEGER NOT NULL REFERENCES transcripts(id) ON DELETE CASCADE,
    old_account_id INTEGER,
    new_account_id INTEGER NOT NULL,
    reason         TEXT NOT NULL,
    actor          TEXT NOT NULL,
    timestamp      TEXT NOT NULL
);

-- Webhook-fed work queue
CREATE TABLE IF NOT EXISTS processing_queue (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    dedup_token  TEXT NOT NULL,
    payload      TEXT NOT NULL,
    status       TEXT NOT NULL DEFAULT 'pending'
                 CHECK (status IN ('pending', 'processing', 'completed', 'dead_letter')),
    attempts     INTEGER DEFAULT 0,
    last_error   TEXT,
    enqueued_at  TEXT NOT NULL,
    claimed_at   TEXT,
    updated_at   TEXT DEFAULT (datetime('now'))
);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_transcripts_account ON transcripts(account_id);
CREATE INDEX IF NOT EXISTS idx_transcripts_start ON transcripts(start_time);
CREATE INDEX IF NOT EXISTS idx_transcripts_platform ON transcripts(platform);
CREATE INDEX IF NOT EXISTS idx_segments_transcript ON transcript_segments(transcript_id);
CREATE INDEX IF NOT EXISTS idx_audit_transcript ON association_audit(transcript_id);
CREATE INDEX IF NOT EXISTS idx_queue_status ON processing_queue(status);
CREATE INDEX IF NOT EXISTS idx_queue_dedup ON processing_queue(dedup_token);
"""


class Database:
    """SQLite database connection manager."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def initialize(self):
        """Create all tables if they don't exist."""
        self.conn.executescript(SCHEMA_SQL)
        # Set schema version if not present
        row = self.conn.execute(
            "SELECT version FROM schema_version LIMIT 1"
        ).fetchone()
        if row is None:
            self.conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
        self.conn.commit()

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, *args):
        self.close()
