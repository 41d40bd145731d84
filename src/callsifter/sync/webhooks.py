"""Webhook intake: validate vendor payloads and enqueue single-call syncs."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

from callsifter.errors import SignatureError, ValidationError
from callsifter.storage.repository import utc_iso
from callsifter.sync.queue import MessageQueue

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookFormat:
    event_field: str
    id_field: str
    processed_events: frozenset[str]
    # payload key -> queue message key
    extras: tuple[tuple[str, str], ...] = ()


WEBHOOK_FORMATS = {
    "gong": WebhookFormat(
        event_field="eventType",
        id_field="callId",
        processed_events=frozenset({"CALL_PROCESSING_COMPLETED"}),
        extras=(("workspaceId", "workspaceId"), ("callData", "callData")),
    ),
    "clari": WebhookFormat(
        event_field="event",
        id_field="callId",
        processed_events=frozenset({"call.completed", "call.transcribed"}),
        extras=(("data", "callData"),),
    ),
    "fireflies": WebhookFormat(
        event_field="event",
        id_field="transcriptId",
        processed_events=frozenset({"transcription_complete"}),
        extras=(("participants", "participants"), ("title", "title")),
    ),
}


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check an HMAC-SHA256 hex signature, optionally prefixed with ``sha256=``."""
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    return hmac.compare_digest(provided.lower(), expected)


def dedup_token(message: dict) -> str:
    return f"{message['platform']}-{message['callId']}-{message['eventType']}"


def parse_webhook(platform: str, body: bytes | str | dict) -> dict[str, Any] | None:
    """Translate a vendor webhook body into a queue message.

    Returns None for events that do not signal a finished call. Raises
    ValidationError for unknown platforms, invalid JSON or missing fields.
    """
    fmt = WEBHOOK_FORMATS.get(platform)
    if fmt is None:
        raise ValidationError(f"Unsupported webhook platform: {platform}")

    if isinstance(body, dict):
        payload = body
    else:
        try:
            payload = json.loads(body or b"")
        except ValueError as e:
            raise ValidationError("Invalid JSON payload") from e
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object")

    event = payload.get(fmt.event_field)
    call_id = payload.get(fmt.id_field)
    if not event or not call_id:
        raise ValidationError(
            f"Missing required fields: {fmt.event_field}, {fmt.id_field}"
        )

    if event not in fmt.processed_events:
        log.info("Ignoring %s event type %s", platform, event)
        return None

    message = {
        "platform": platform,
        "callId": str(call_id),
        "eventType": event,
        "timestamp": payload.get("timestamp") or utc_iso(),
        "source": "webhook",
    }
    for source_key, message_key in fmt.extras:
        if payload.get(source_key) is not None:
            message[message_key] = payload[source_key]
    return message


class WebhookIntake:
    def __init__(self, queue: MessageQueue, secrets: dict[str, str] | None = None):
        self.queue = queue
        self.secrets = secrets or {}

    def handle(self, platform: str, body: bytes, signature: str | None = None) -> dict:
        """Validate, translate and enqueue one webhook delivery.

        A signature is only checked when both a secret is configured for
        the platform and the request carries one.
        """
        secret = self.secrets.get(platform)
        if secret and signature and not verify_signature(body, signature, secret):
            raise SignatureError(f"Invalid {platform} webhook signature")

        message = parse_webhook(platform, body)
        if message is None:
            return {"message": "Event type ignored"}

        message_id = self.queue.enqueue(message, dedup_token(message))
        if message_id is None:
            return {"message": "Duplicate webhook ignored", "callId": message["callId"]}

        log.info("Queued %s call %s for processing", platform, message["callId"])
        return {
            "message": "Webhook processed successfully",
            "callId": message["callId"],
            "messageId": message_id,
        }
