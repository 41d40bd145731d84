"""Tests for callsifter.sync.webhooks."""

from __future__ import annotations

import hashlib
import hmac
import json

import pytest

from callsifter.errors import SignatureError, ValidationError
from callsifter.sync.queue import MessageQueue
from callsifter.sync.webhooks import (
    WebhookIntake,
    dedup_token,
    parse_webhook,
    verify_signature,
)


def body(**payload) -> bytes:
    return json.dumps(payload).encode()


def sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


class TestParseWebhook:
    def test_gong(self):
        message = parse_webhook("gong", body(
            eventType="CALL_PROCESSING_COMPLETED", callId=123, workspaceId="ws-1",
            timestamp="2024-03-15T15:30:00Z",
        ))
        assert message == {
            "platform": "gong",
            "callId": "123",
            "eventType": "CALL_PROCESSING_COMPLETED",
            "timestamp": "2024-03-15T15:30:00Z",
            "source": "webhook",
            "workspaceId": "ws-1",
        }

    def test_clari_data_becomes_call_data(self):
        message = parse_webhook("clari", body(
            event="call.transcribed", callId="cl-1", data={"title": "QBR"},
        ))
        assert message["callData"] == {"title": "QBR"}
        assert message["eventType"] == "call.transcribed"

    def test_fireflies_uses_transcript_id(self):
        message = parse_webhook("fireflies", body(
            event="transcription_complete", transcriptId="ff-1", title="Renewal",
        ))
        assert message["callId"] == "ff-1"
        assert message["title"] == "Renewal"
        assert message["timestamp"]

    @pytest.mark.parametrize("platform, payload", [
        ("gong", {"eventType": "CALL_CREATED", "callId": "1"}),
        ("clari", {"event": "call.scheduled", "callId": "1"}),
        ("fireflies", {"event": "meeting_started", "transcriptId": "1"}),
    ])
    def test_other_events_ignored(self, platform, payload):
        assert parse_webhook(platform, payload) is None

    def test_missing_fields(self):
        with pytest.raises(ValidationError, match="Missing required fields: eventType, callId"):
            parse_webhook("gong", body(eventType="CALL_PROCESSING_COMPLETED"))

    @pytest.mark.parametrize("raw", [b"{not json", b"", b"[1, 2]"])
    def test_bad_body(self, raw):
        with pytest.raises(ValidationError):
            parse_webhook("clari", raw)

    def test_unknown_platform(self):
        with pytest.raises(ValidationError, match="Unsupported"):
            parse_webhook("zoom", body(event="x", callId="1"))


class TestSignature:
    def test_valid(self):
        raw = body(eventType="CALL_PROCESSING_COMPLETED", callId="1")
        assert verify_signature(raw, sign(raw, "secret"), "secret")
        assert verify_signature(raw, "sha256=" + sign(raw, "secret"), "secret")

    def test_invalid(self):
        raw = body(callId="1")
        assert not verify_signature(raw, sign(raw, "other"), "secret")
        assert not verify_signature(raw, "garbage", "secret")


class TestWebhookIntake:
    @pytest.fixture
    def queue(self, tmp_db):
        return MessageQueue(tmp_db)

    @pytest.fixture
    def intake(self, queue):
        return WebhookIntake(queue, secrets={"gong": "secret"})

    def test_enqueues(self, intake, queue):
        raw = body(event="call.completed", callId="cl-9")
        response = intake.handle("clari", raw)

        assert response["message"] == "Webhook processed successfully"
        assert response["callId"] == "cl-9"
        (received,) = queue.receive()
        assert received.id == response["messageId"]
        assert received.dedup_token == "clari-cl-9-call.completed"

    def test_duplicate_delivery(self, intake):
        raw = body(event="call.completed", callId="cl-9")
        intake.handle("clari", raw)
        assert intake.handle("clari", raw) == {
            "message": "Duplicate webhook ignored", "callId": "cl-9",
        }

    def test_ignored_event_not_queued(self, intake, queue):
        assert intake.handle("clari", body(event="call.scheduled", callId="1")) == {
            "message": "Event type ignored",
        }
        assert queue.receive() == []

    def test_bad_signature_rejected(self, intake, queue):
        raw = body(eventType="CALL_PROCESSING_COMPLETED", callId="1")
        with pytest.raises(SignatureError):
            intake.handle("gong", raw, signature=sign(raw, "wrong"))
        assert queue.receive() == []

    def test_good_signature_accepted(self, intake):
        raw = body(eventType="CALL_PROCESSING_COMPLETED", callId="1")
        response = intake.handle("gong", raw, signature=sign(raw, "secret"))
        assert response["callId"] == "1"

    def test_unsigned_request_accepted(self, intake):
        raw = body(eventType="CALL_PROCESSING_COMPLETED", callId="2")
        assert intake.handle("gong", raw)["callId"] == "2"

    def test_dedup_token(self):
        assert dedup_token({"platform": "gong", "callId": "1", "eventType": "E"}) == "gong-1-E"
