"""Persistence gateway: CRUD for transcripts, accounts and the audit trail."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from callsifter.errors import PersistenceConflict
from callsifter.search.filters import TranscriptFilters
from callsifter.search.keyword import search_transcripts
from callsifter.storage.database import Database
from callsifter.storage.models import Account, AuditRecord, Segment, Transcript


def utc_iso(moment: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp; sortable as text."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def _is_unique_violation(error: sqlite3.IntegrityError) -> bool:
    return "UNIQUE" in str(error).upper()


class Repository:
    """Database operations for CallSifter."""

    def __init__(self, db: Database):
        self.db = db

    # ── Transcripts ────────────────────────────────────────────────

    def transcript_exists(self, platform: str, call_id: str) -> bool:
        row = self.db.conn.execute(
            "SELECT 1 FROM transcripts WHERE platform = ? AND call_id = ?",
            (platform, call_id),
        ).fetchone()
        return row is not None

    def get_transcript(self, platform: str, call_id: str) -> dict | None:
        row = self.db.conn.execute(
            "SELECT * FROM transcripts WHERE platform = ? AND call_id = ?",
            (platform, call_id),
        ).fetchone()
        return self._transcript_row(row)

    def get_transcript_by_id(self, transcript_id: int) -> dict | None:
        row = self.db.conn.execute(
            "SELECT * FROM transcripts WHERE id = ?", (transcript_id,)
        ).fetchone()
        return self._transcript_row(row)

    def get_segments(self, transcript_id: int) -> list[dict]:
        rows = self.db.conn.execute(
            """SELECT * FROM transcript_segments
               WHERE transcript_id = ? ORDER BY sequence_number""",
            (transcript_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def get_transcript_count(self) -> int:
        row = self.db.conn.execute("SELECT COUNT(*) FROM transcripts").fetchone()
        return row[0]

    def insert_transcript(
        self,
        transcript: Transcript,
        account_id: int | None,
        ai_content: dict | None = None,
        source: str = "batch",
        confidence: float | None = None,
        rule_name: str | None = None,
    ) -> int:
        """Insert a transcript with its segments.

        Raises PersistenceConflict if (platform, call_id) is already stored.
        """
        call = transcript.call
        try:
            cursor = self.db.conn.execute(
                """INSERT INTO transcripts
                   (platform, call_id, account_id, title, start_time, end_time,
                    duration, full_text, recording_url, attendees_json,
                    ai_content, confidence, rule_name, source, processed_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    call.platform,
                    call.id,
                    account_id,
                    call.title,
                    utc_iso(call.start_time),
                    utc_iso(call.end_time),
                    call.duration,
                    transcript.full_text,
                    call.recording_url,
                    json.dumps([asdict(a) for a in call.attendees]),
                    json.dumps(ai_content) if ai_content is not None else None,
                    confidence,
                    rule_name,
                    source,
                    utc_iso(),
                ),
            )
        except sqlite3.IntegrityError as e:
            self.db.conn.rollback()
            if _is_unique_violation(e):
                raise PersistenceConflict(
                    f"Transcript {call.platform}/{call.id} already exists"
                ) from e
            raise

        transcript_id = cursor.lastrowid
        try:
            self._replace_segments(transcript_id, transcript.segments)
        except sqlite3.Error:
            self.db.conn.rollback()
            raise
        self.db.conn.commit()
        return transcript_id

    def update_transcript_content(
        self,
        transcript: Transcript,
        ai_content: dict | None = None,
        source: str = "batch",
    ) -> int:
        """Overwrite metadata, text and segments; the account pointer is untouched."""
        call = transcript.call
        existing = self.get_transcript(call.platform, call.id)
        if existing is None:
            raise LookupError(f"Transcript {call.platform}/{call.id} not stored")

        try:
            self.db.conn.execute(
                """UPDATE transcripts SET
                     title = ?, start_time = ?, end_time = ?, duration = ?,
                     full_text = ?, recording_url = ?, attendees_json = ?,
                     ai_content = COALESCE(?, ai_content), source = ?,
                     processed_at = ?, updated_at = datetime('now')
                   WHERE id = ?""",
                (
                    call.title,
                    utc_iso(call.start_time),
                    utc_iso(call.end_time),
                    call.duration,
                    transcript.full_text,
                    call.recording_url,
                    json.dumps([asdict(a) for a in call.attendees]),
                    json.dumps(ai_content) if ai_content is not None else None,
                    source,
                    utc_iso(),
                    existing["id"],
                ),
            )
            self._replace_segments(existing["id"], transcript.segments)
        except sqlite3.Error:
            self.db.conn.rollback()
            raise
        self.db.conn.commit()
        return existing["id"]

    def create_or_update_transcript(
        self,
        transcript: Transcript,
        account_id: int | None,
        ai_content: dict | None = None,
        source: str = "batch",
        confidence: float | None = None,
        rule_name: str | None = None,
    ) -> tuple[int, str]:
        """Insert, or update in place when the natural key is taken.

        Returns (transcript_id, "created" | "updated").
        """
        try:
            transcript_id = self.insert_transcript(
                transcript, account_id, ai_content, source, confidence, rule_name
            )
            return transcript_id, "created"
        except PersistenceConflict:
            transcript_id = self.update_transcript_content(transcript, ai_content, source)
            return transcript_id, "updated"

    def update_transcript_account(self, transcript_id: int, account_id: int):
        self.db.conn.execute(
            """UPDATE transcripts SET account_id = ?, updated_at = datetime('now')
               WHERE id = ?""",
            (account_id, transcript_id),
        )
        self.db.conn.commit()

    def _replace_segments(self, transcript_id: int, segments: list[Segment]):
        self.db.conn.execute(
            "DELETE FROM transcript_segments WHERE transcript_id = ?",
            (transcript_id,),
        )
        self.db.conn.executemany(
            """INSERT INTO transcript_segments
               (transcript_id, sequence_number, speaker, speaker_email,
                text, start_ms, end_ms, confidence)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    transcript_id,
                    index,
                    seg.speaker,
                    seg.speaker_email,
                    seg.text,
                    seg.start_ms,
                    seg.end_ms,
                    seg.confidence,
                )
                for index, seg in enumerate(segments)
            ],
        )

    def _transcript_row(self, row) -> dict | None:
        if row is None:
            return None
        data = dict(row)
        data["attendees"] = json.loads(data.pop("attendees_json") or "[]")
        if data.get("ai_content"):
            data["ai_content"] = json.loads(data["ai_content"])
        return data

    # ── Accounts ───────────────────────────────────────────────────

    def get_account_by_domain(self, domain: str) -> Account | None:
        row = self.db.conn.execute(
            "SELECT * FROM accounts WHERE domain = ?", (domain,)
        ).fetchone()
        return self._account_row(row)

    def get_account_by_id(self, account_id: int) -> Account | None:
        row = self.db.conn.execute(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        return self._account_row(row)

    def create_account(
        self, name: str, domain: str, metadata: dict[str, Any] | None = None
    ) -> Account:
        """Insert an account. Raises PersistenceConflict if the domain is taken."""
        try:
            cursor = self.db.conn.execute(
                "INSERT INTO accounts (name, domain, metadata_json) VALUES (?, ?, ?)",
                (name, domain, json.dumps(metadata or {})),
            )
        except sqlite3.IntegrityError as e:
            self.db.conn.rollback()
            if _is_unique_violation(e):
                raise PersistenceConflict(f"Account domain {domain} already exists") from e
            raise
        self.db.conn.commit()
        return self.get_account_by_id(cursor.lastrowid)

    def get_or_create_account(
        self, name: str, domain: str, metadata: dict[str, Any] | None = None
    ) -> tuple[Account, bool]:
        """Return the account keyed by domain, creating it on first sight.

        A concurrent writer winning the insert is resolved by re-reading.
        Returns (account, created).
        """
        existing = self.get_account_by_domain(domain)
        if existing is not None:
            return existing, False
        try:
            return self.create_account(name, domain, metadata), True
        except PersistenceConflict:
            winner = self.get_account_by_domain(domain)
            if winner is None:
                raise
            return winner, False

    def list_accounts(self) -> list[dict]:
        rows = self.db.conn.execute(
            """SELECT a.*, COUNT(t.id) as transcript_count
               FROM accounts a
               LEFT JOIN transcripts t ON t.account_id = a.id
               GROUP BY a.id
               ORDER BY a.name"""
        ).fetchall()
        result = []
        for r in rows:
            data = dict(r)
            data["metadata"] = json.loads(data.pop("metadata_json") or "{}")
            result.append(data)
        return result

    def _account_row(self, row) -> Account | None:
        if row is None:
            return None
        return Account(
            id=row["id"],
            name=row["name"],
            domain=row["domain"],
            metadata=json.loads(row["metadata_json"] or "{}"),
            created_at=row["created_at"],
        )

    # ── Audit Trail ────────────────────────────────────────────────

    def record_reassociation(self, record: AuditRecord) -> int:
        audit_id = self._insert_audit(record)
        self.db.conn.commit()
        return audit_id

    def reassign_transcript(self, record: AuditRecord) -> int:
        """Move a transcript to record.new_account_id and log it, atomically."""
        try:
            self.db.conn.execute(
                """UPDATE transcripts SET account_id = ?, updated_at = datetime('now')
                   WHERE id = ?""",
                (record.new_account_id, record.transcript_id),
            )
            audit_id = self._insert_audit(record)
        except sqlite3.Error:
            self.db.conn.rollback()
            raise
        self.db.conn.commit()
        return audit_id

    def _insert_audit(self, record: AuditRecord) -> int:
        cursor = self.db.conn.execute(
            """INSERT INTO association_audit
               (transcript_id, old_account_id, new_account_id, reason, actor, timestamp)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                record.transcript_id,
                record.old_account_id,
                record.new_account_id,
                record.reason,
                record.actor,
                record.timestamp,
            ),
        )
        return cursor.lastrowid

    def get_audit_trail(self, transcript_id: int) -> list[AuditRecord]:
        rows = self.db.conn.execute(
            """SELECT * FROM association_audit
               WHERE transcript_id = ? ORDER BY id""",
            (transcript_id,),
        ).fetchall()
        return [
            AuditRecord(
                transcript_id=r["transcript_id"],
                old_account_id=r["old_account_id"],
                new_account_id=r["new_account_id"],
                reason=r["reason"],
                actor=r["actor"],
                timestamp=r["timestamp"],
            )
            for r in rows
        ]

    # ── Search & Summary ───────────────────────────────────────────

    def search_transcripts(self, filters: TranscriptFilters | None = None) -> dict:
        return search_transcripts(self.db, filters)

    def get_summary(self) -> dict:
        """Counts per platform plus account and queue totals."""
        rows = self.db.conn.execute(
            "SELECT platform, COUNT(*) FROM transcripts GROUP BY platform"
        ).fetchall()
        by_platform = {r[0]: r[1] for r in rows}
        accounts = self.db.conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]
        queue_rows = self.db.conn.execute(
            "SELECT status, COUNT(*) FROM processing_queue GROUP BY status"
        ).fetchall()
        return {
            "total_transcripts": sum(by_platform.values()),
            "by_platform": by_platform,
            "total_accounts": accounts,
            "queue": {r[0]: r[1] for r in queue_rows},
        }
