"""Tests for callsifter.sync.engine."""

from __future__ import annotations

from datetime import timedelta

import pytest

from callsifter.errors import (
    AuthConfigError,
    NotFoundError,
    PlatformAPIError,
    TransientError,
    UnsupportedPlatformError,
)
from callsifter.sync.engine import RetryPolicy, SyncResult, SyncSummary


@pytest.fixture
def three_calls(fake_adapter, make_transcript, base_time):
    for i, call_id in enumerate(("a", "b", "c")):
        fake_adapter.add(make_transcript(
            call_id=call_id, start=base_time + timedelta(minutes=i),
        ))
    return fake_adapter


class TestRetryPolicy:
    def test_exponential(self):
        policy = RetryPolicy(base_delay=1.0, factor=2.0)
        assert [policy.delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_retry_after_raises_floor(self):
        assert RetryPolicy(base_delay=1.0).delay(1, retry_after=5) == 5

    def test_capped(self):
        assert RetryPolicy(base_delay=10.0, max_delay=15.0).delay(3) == 15.0


class TestSyncResult:
    def test_to_dict_omits_empty_fields(self):
        result = SyncResult(call_id="a", status="skipped", title="T", reason="already_exists")
        assert result.to_dict() == {
            "callId": "a", "status": "skipped", "title": "T", "reason": "already_exists",
        }

    def test_summary_counts(self):
        summary = SyncSummary(platform="gong", details=[
            SyncResult(call_id="1", status="success"),
            SyncResult(call_id="2", status="skipped"),
            SyncResult(call_id="3", status="error"),
            SyncResult(call_id="4", status="success"),
        ])
        data = summary.to_dict()
        assert (data["total"], data["processed"], data["skipped"], data["errors"]) == (4, 2, 1, 1)
        assert data["success"] is True
        assert len(data["details"]) == 4


class TestBulkSync:
    def test_processes_new_calls(self, engine, three_calls, repo, window):
        summary = engine.bulk_sync("gong", window)

        assert (summary.total, summary.processed, summary.skipped, summary.errors) == (3, 3, 0, 0)
        assert [d.action for d in summary.details] == ["created"] * 3
        assert repo.get_transcript_count() == 3
        first = summary.details[0]
        assert first.account_id is not None
        assert first.rule_name == "domain-based"

    def test_second_run_skips_everything(self, engine, three_calls, repo, window):
        engine.bulk_sync("gong", window)
        three_calls.transcript_requests.clear()

        summary = engine.bulk_sync("gong", window)
        assert summary.skipped == 3
        assert {d.reason for d in summary.details} == {"already_exists"}
        assert three_calls.transcript_requests == []
        assert repo.get_transcript_count() == 3

    def test_failures_isolated_and_retried(self, engine, three_calls, repo, sleeps, window):
        three_calls.failures["a"] = [TransientError("blip")]
        three_calls.failures["b"] = [TransientError("down")] * 3

        summary = engine.bulk_sync("gong", window)

        assert summary.total == 3
        assert summary.processed == 2
        assert summary.errors == 1
        failed = [d for d in summary.details if d.status == "error"]
        assert failed[0].call_id == "b"
        assert failed[0].error == "down"
        assert sleeps == [1.0, 1.0, 2.0]
        assert repo.get_transcript_count() == 2

    def test_errored_call_picked_up_next_run(self, engine, three_calls, window):
        three_calls.failures["c"] = [NotFoundError("not ready")]
        assert engine.bulk_sync("gong", window).errors == 1

        summary = engine.bulk_sync("gong", window)
        assert summary.processed == 1
        assert summary.skipped == 2

    def test_calls_outside_window_ignored(self, engine, three_calls, make_transcript, base_time, window):
        three_calls.add(make_transcript(call_id="old", start=base_time - timedelta(days=30)))
        summary = engine.bulk_sync("gong", window)
        assert "old" not in {d.call_id for d in summary.details}

    def test_limit(self, engine, three_calls, window):
        summary = engine.bulk_sync("gong", window, limit=2)
        assert [d.call_id for d in summary.details] == ["a", "b"]

    def test_listing_failure_propagates(self, engine, three_calls, repo, window):
        three_calls.list_failures.append(PlatformAPIError("bad request", status_code=400))
        with pytest.raises(PlatformAPIError):
            engine.bulk_sync("gong", window)
        assert repo.get_transcript_count() == 0

    def test_transient_listing_failure_retried(self, engine, three_calls, sleeps, window):
        three_calls.list_failures.append(TransientError("slow down", retry_after=4))
        assert engine.bulk_sync("gong", window).processed == 3
        assert sleeps == [4]

    def test_unknown_platform(self, engine, window):
        with pytest.raises(UnsupportedPlatformError, match="Unsupported platform"):
            engine.bulk_sync("zoom", window)

    def test_ai_content_failure_absorbed(self, engine, three_calls, repo, window):
        three_calls.ai_error = PlatformAPIError("insights disabled")
        summary = engine.bulk_sync("gong", window)
        assert summary.processed == 3
        assert repo.get_transcript("gong", "a")["ai_content"] is None

    def test_ai_content_stored(self, engine, three_calls, repo, window):
        three_calls.ai_content["a"] = {"brief": "Pipeline pain"}
        engine.bulk_sync("gong", window)
        assert repo.get_transcript("gong", "a")["ai_content"] == {"brief": "Pipeline pain"}


class TestAuthRecovery:
    def test_reauthenticates_once(self, engine, three_calls, window):
        three_calls.failures["a"] = [AuthConfigError("token expired")]
        summary = engine.bulk_sync("gong", window)

        assert summary.processed == 3
        assert three_calls.auth_count == 2

    def test_second_auth_failure_is_final(self, engine, three_calls, window):
        three_calls.failures["a"] = [AuthConfigError("revoked"), AuthConfigError("revoked")]
        summary = engine.bulk_sync("gong", window)

        assert summary.errors == 1
        assert summary.details[0].error == "revoked"

    def test_reauth_does_not_use_up_attempts(self, engine, three_calls, sleeps, window):
        three_calls.failures["a"] = [
            AuthConfigError("expired"), TransientError("x"), TransientError("y"),
        ]
        summary = engine.bulk_sync("gong", window)
        assert summary.processed == 3
        assert sleeps == [1.0, 2.0]


class TestSyncCall:
    def test_idempotent(self, engine, fake_adapter, sample_transcript, repo):
        fake_adapter.add(sample_transcript)

        first = engine.sync_call("gong", "call-1")
        second = engine.sync_call("gong", "call-1")

        assert (first.action, second.action) == ("created", "updated")
        assert first.transcript_id == second.transcript_id
        assert repo.get_transcript_count() == 1
        assert second.confidence == first.confidence
        assert second.rule_name == first.rule_name

    def test_resync_keeps_reviewed_account(self, engine, association, fake_adapter,
                                           sample_transcript, repo):
        fake_adapter.add(sample_transcript)
        first = engine.sync_call("gong", "call-1")
        reviewed = repo.create_account("Reviewed", "reviewed.example")
        association.reassociate_transcript(first.transcript_id, reviewed.id, "Ops review")

        again = engine.sync_call("gong", "call-1", source="manual")
        assert again.account_id == reviewed.id

    def test_errors_propagate(self, engine, fake_adapter):
        with pytest.raises(NotFoundError):
            engine.sync_call("gong", "missing")

    def test_to_dict(self, engine, fake_adapter, sample_transcript):
        fake_adapter.add(sample_transcript)
        data = engine.sync_call("gong", "call-1").to_dict()
        assert data["status"] == "success"
        assert data["action"] == "created"
        assert data["rule"] == "domain-based"
        assert "error" not in data
