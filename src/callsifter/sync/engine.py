"""
Sync engine: list → skip known → fetch → associate → persist.

Bulk sync isolates failures per call and always accounts for every
listed call in its summary. Single-call sync runs the same pipeline for
one call and lets errors propagate to the caller (usually the queue
consumer, whose transport handles redelivery).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from callsifter.association.engine import AccountAssociationEngine
from callsifter.config import SYNC_BACKOFF_SECONDS, SYNC_LIMIT, SYNC_MAX_ATTEMPTS
from callsifter.errors import AuthConfigError, TransientError
from callsifter.platforms.base import PlatformAdapter
from callsifter.platforms.registry import AdapterRegistry
from callsifter.storage.models import CallWindow
from callsifter.storage.repository import Repository

log = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Exponential backoff for TransientError."""

    max_attempts: int = SYNC_MAX_ATTEMPTS
    base_delay: float = SYNC_BACKOFF_SECONDS
    factor: float = 2.0
    max_delay: float = 30.0

    def delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        wait = self.base_delay * self.factor ** (attempt - 1)
        if retry_after is not None:
            wait = max(wait, retry_after)
        return min(wait, self.max_delay)


@dataclass
class SyncResult:
    call_id: str
    status: str  # "success" | "skipped" | "error"
    title: str | None = None
    reason: str | None = None
    error: str | None = None
    action: str | None = None  # "created" | "updated"
    transcript_id: int | None = None
    account_id: int | None = None
    confidence: float | None = None
    rule_name: str | None = None

    def to_dict(self) -> dict:
        data = {"callId": self.call_id, "status": self.status, "title": self.title}
        extras = {
            "reason": self.reason,
            "error": self.error,
            "action": self.action,
            "transcriptId": self.transcript_id,
            "accountId": self.account_id,
            "confidence": self.confidence,
            "rule": self.rule_name,
        }
        data.update({k: v for k, v in extras.items() if v is not None})
        return data


@dataclass
class SyncSummary:
    platform: str
    details: list[SyncResult] = field(default_factory=list)
    execution_time: float = 0.0

    @property
    def total(self) -> int:
        return len(self.details)

    def _count(self, status: str) -> int:
        return sum(1 for d in self.details if d.status == status)

    @property
    def processed(self) -> int:
        return self._count("success")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def errors(self) -> int:
        return self._count("error")

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "platform": self.platform,
            "total": self.total,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "details": [d.to_dict() for d in self.details],
            "executionTime": round(self.execution_time, 3),
        }


class SyncEngine:
    def __init__(
        self,
        registry: AdapterRegistry,
        repo: Repository,
        association: AccountAssociationEngine,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.registry = registry
        self.repo = repo
        self.association = association
        self.retry = retry or RetryPolicy()
        self._sleep = sleep

    # ── Entry points ───────────────────────────────────────────────

    def bulk_sync(
        self,
        platform: str,
        window: CallWindow | None = None,
        limit: int = SYNC_LIMIT,
    ) -> SyncSummary:
        """Ingest every call in the window that is not stored yet.

        Adapter lookup, authentication and listing failures abort the
        sync. Failures while processing one call are recorded for that
        call and the batch continues.
        """
        started = time.monotonic()
        window = window or CallWindow.last_days(1)
        adapter = self.registry.get(platform)

        log.info("Listing %s calls from %s to %s", platform, window.start, window.end)
        calls = self._with_retry(adapter, adapter.list_calls, window, limit)
        log.info("Found %d %s calls", len(calls), platform)

        summary = SyncSummary(platform=adapter.name)
        for call in calls:
            if self.repo.transcript_exists(call.platform, call.id):
                summary.details.append(SyncResult(
                    call_id=call.id, status="skipped", title=call.title, reason="already_exists",
                ))
                continue
            try:
                result = self._process(adapter, call.id, source="batch")
            except Exception as e:
                log.error("Failed to process %s call %s: %s", platform, call.id, e)
                result = SyncResult(call_id=call.id, status="error", title=call.title, error=str(e))
            summary.details.append(result)

        summary.execution_time = time.monotonic() - started
        log.info(
            "%s sync finished in %.1fs: %d processed, %d skipped, %d errors",
            platform, summary.execution_time,
            summary.processed, summary.skipped, summary.errors,
        )
        return summary

    def sync_call(self, platform: str, call_id: str, source: str = "webhook") -> SyncResult:
        """Fetch and persist one call. Re-running it updates in place."""
        adapter = self.registry.get(platform)
        return self._process(adapter, call_id, source=source)

    # ── Pipeline ───────────────────────────────────────────────────

    def _process(self, adapter: PlatformAdapter, call_id: str, source: str) -> SyncResult:
        transcript = self._with_retry(adapter, adapter.get_transcript, call_id)
        transcript.ai_content = self._fetch_ai_content(adapter, call_id)
        call = transcript.call

        existing = self.repo.get_transcript(call.platform, call.id)
        if existing is not None:
            # Re-sync refreshes content but never moves the call to another account
            transcript_id = self.repo.update_transcript_content(
                transcript, transcript.ai_content, source
            )
            action = "updated"
            confidence, rule_name = existing["confidence"], existing["rule_name"]
        else:
            association = self.association.determine_account_association(transcript)
            transcript_id, action = self.repo.create_or_update_transcript(
                transcript,
                association.account_id,
                ai_content=transcript.ai_content,
                source=source,
                confidence=association.confidence,
                rule_name=association.rule_name,
            )
            confidence, rule_name = association.confidence, association.rule_name

        stored = self.repo.get_transcript_by_id(transcript_id)
        log.info("%s %s call %s as transcript %s", action.capitalize(), call.platform, call.id, transcript_id)
        return SyncResult(
            call_id=call.id,
            status="success",
            title=call.title,
            action=action,
            transcript_id=transcript_id,
            account_id=stored["account_id"] if stored else None,
            confidence=confidence,
            rule_name=rule_name,
        )

    def _fetch_ai_content(self, adapter: PlatformAdapter, call_id: str) -> dict | None:
        try:
            return self._with_retry(adapter, adapter.get_ai_content, call_id)
        except Exception as e:
            log.warning("AI content unavailable for %s call %s: %s", adapter.name, call_id, e)
            return None

    def _with_retry(self, adapter: PlatformAdapter, fn: Callable, *args):
        """Run an adapter call with backoff on TransientError.

        An AuthConfigError triggers one re-authentication; a second one
        is final.
        """
        attempt = 0
        reauthenticated = False
        while True:
            attempt += 1
            try:
                return fn(*args)
            except AuthConfigError:
                if reauthenticated:
                    raise
                reauthenticated = True
                attempt -= 1
                log.warning("%s rejected credentials, re-authenticating", adapter.name)
                adapter.authenticate()
            except TransientError as e:
                if attempt >= self.retry.max_attempts:
                    raise
                wait = self.retry.delay(attempt, e.retry_after)
                log.warning(
                    "%s transient failure (attempt %d/%d): %s. Retrying in %.1fs",
                    adapter.name, attempt, self.retry.max_attempts, e, wait,
                )
                self._sleep(wait)

