"""SQLite-backed message queue feeding single-call sync.

The queue is the transport: it deduplicates enqueues, tracks receive
attempts and dead-letters messages that keep failing. The consumer only
runs one sync per message and lets errors escape to the transport.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from callsifter.config import (
    QUEUE_DEDUP_WINDOW_SECONDS,
    QUEUE_MAX_RECEIVES,
    QUEUE_VISIBILITY_TIMEOUT_SECONDS,
)
from callsifter.errors import ValidationError
from callsifter.storage.database import Database
from callsifter.storage.repository import utc_iso
from callsifter.sync.engine import SyncEngine, SyncResult

log = logging.getLogger(__name__)


@dataclass
class QueueMessage:
    id: int
    payload: dict
    attempts: int
    dedup_token: str


class MessageQueue:
    def __init__(
        self,
        db: Database,
        max_receives: int = QUEUE_MAX_RECEIVES,
        dedup_window: float = QUEUE_DEDUP_WINDOW_SECONDS,
        visibility_timeout: float = QUEUE_VISIBILITY_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.max_receives = max_receives
        self.dedup_window = dedup_window
        self.visibility_timeout = visibility_timeout
        self._clock = clock

    def enqueue(self, payload: dict, dedup_token: str) -> int | None:
        """Add a message unless the same token was enqueued within the dedup window.

        Returns the message id, or None for a duplicate.
        """
        now = self._clock()
        cutoff = utc_iso(now - timedelta(seconds=self.dedup_window))
        duplicate = self.db.conn.execute(
            "SELECT id FROM processing_queue WHERE dedup_token = ? AND enqueued_at > ?",
            (dedup_token, cutoff),
        ).fetchone()
        if duplicate is not None:
            log.info("Dropping duplicate message %s (already queued as %s)", dedup_token, duplicate["id"])
            return None

        cursor = self.db.conn.execute(
            """INSERT INTO processing_queue (dedup_token, payload, enqueued_at)
               VALUES (?, ?, ?)""",
            (dedup_token, json.dumps(payload), utc_iso(now)),
        )
        self.db.conn.commit()
        return cursor.lastrowid

    def receive(self, batch_size: int = 10) -> list[QueueMessage]:
        """Claim up to batch_size messages, oldest first.

        Pending messages are claimed, as are messages whose claim expired
        without an ack or fail. An expired claim that already used every
        receive goes to the dead-letter state instead.
        """
        now = self._clock()
        expired = utc_iso(now - timedelta(seconds=self.visibility_timeout))
        rows = self.db.conn.execute(
            """SELECT * FROM processing_queue
               WHERE status = 'pending'
                  OR (status = 'processing' AND claimed_at <= ?)
               ORDER BY id LIMIT ?""",
            (expired, batch_size),
        ).fetchall()
        if not rows:
            return []

        exhausted = [
            r for r in rows if r["status"] == "processing" and r["attempts"] >= self.max_receives
        ]
        exhausted_ids = {r["id"] for r in exhausted}
        rows = [r for r in rows if r["id"] not in exhausted_ids]
        for r in exhausted:
            log.error("Message %s dead-lettered: claim expired after %d attempts", r["id"], r["attempts"])
        self.db.conn.executemany(
            """UPDATE processing_queue
               SET status = 'dead_letter', last_error = ?, updated_at = datetime('now')
               WHERE id = ?""",
            [("Visibility timeout expired", r["id"]) for r in exhausted],
        )
        for r in rows:
            if r["status"] == "processing":
                log.warning("Reclaiming message %s after its claim expired", r["id"])
        self.db.conn.executemany(
            """UPDATE processing_queue
               SET status = 'processing', attempts = attempts + 1, claimed_at = ?,
                   updated_at = datetime('now')
               WHERE id = ?""",
            [(utc_iso(now), r["id"]) for r in rows],
        )
        self.db.conn.commit()
        if exhausted and not rows:
            return self.receive(batch_size)
        return [
            QueueMessage(
                id=r["id"],
                payload=json.loads(r["payload"]),
                attempts=r["attempts"] + 1,
                dedup_token=r["dedup_token"],
            )
            for r in rows
        ]

    def ack(self, message_id: int):
        self.db.conn.execute(
            """UPDATE processing_queue
               SET status = 'completed', last_error = NULL, updated_at = datetime('now')
               WHERE id = ?""",
            (message_id,),
        )
        self.db.conn.commit()

    def fail(self, message_id: int, error: str) -> str:
        """Return a message for redelivery, or dead-letter it at the receive ceiling.

        Returns the message's new status.
        """
        row = self.db.conn.execute(
            "SELECT attempts FROM processing_queue WHERE id = ?", (message_id,)
        ).fetchone()
        if row is None:
            raise LookupError(f"Queue message {message_id} not found")

        status = "dead_letter" if row["attempts"] >= self.max_receives else "pending"
        self.db.conn.execute(
            """UPDATE processing_queue
               SET status = ?, last_error = ?, updated_at = datetime('now')
               WHERE id = ?""",
            (status, error, message_id),
        )
        self.db.conn.commit()
        if status == "dead_letter":
            log.error("Message %s dead-lettered after %d attempts: %s", message_id, row["attempts"], error)
        return status

    def dead_letters(self) -> list[dict]:
        rows = self.db.conn.execute(
            "SELECT * FROM processing_queue WHERE status = 'dead_letter' ORDER BY id"
        ).fetchall()
        return [dict(r, payload=json.loads(r["payload"])) for r in rows]


class QueueConsumer:
    def __init__(self, queue: MessageQueue, engine: SyncEngine):
        self.queue = queue
        self.engine = engine

    def handle_message(self, payload: dict) -> SyncResult:
        """Run single-call sync for one message. Errors propagate."""
        platform = payload.get("platform")
        call_id = payload.get("callId")
        if not platform or not call_id:
            raise ValidationError("Queue message is missing platform or callId")
        log.info("Processing %s call %s from %s", platform, call_id, payload.get("source", "webhook"))
        return self.engine.sync_call(platform, str(call_id), source=payload.get("source", "webhook"))

    def drain(self, batch_size: int = 10, max_batches: int | None = None) -> dict:
        """Deliver pending messages until the queue is empty.

        Each message is acked or failed on its own; a failure never
        affects the rest of its batch.
        """
        counts = {"succeeded": 0, "retried": 0, "dead_lettered": 0}
        batches = 0
        while max_batches is None or batches < max_batches:
            messages = self.queue.receive(batch_size)
            if not messages:
                break
            batches += 1
            for message in messages:
                try:
                    self.handle_message(message.payload)
                except Exception as e:
                    log.warning("Message %s failed (attempt %d): %s", message.id, message.attempts, e)
                    status = self.queue.fail(message.id, str(e))
                    counts["dead_lettered" if status == "dead_letter" else "retried"] += 1
                else:
                    self.queue.ack(message.id)
                    counts["succeeded"] += 1
        return counts
