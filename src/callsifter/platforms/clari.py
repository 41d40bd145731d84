"""Clari adapter: API-key auth, offset paging, per-segment speaker emails."""

from __future__ import annotations

import logging
from typing import TypedDict

from callsifter.errors import AuthConfigError, CallSifterError, NotFoundError
from callsifter.platforms.base import Cursor, PlatformAdapter, parse_timestamp
from callsifter.platforms.ratelimit import RateLimiter
from callsifter.storage.models import (
    Attendee,
    Call,
    CallWindow,
    Credentials,
    Segment,
    Transcript,
)

log = logging.getLogger(__name__)

WEBHOOK_EVENTS = ["call.completed", "call.transcribed"]


class ClariParticipant(TypedDict, total=False):
    email: str
    name: str
    role: str
    company: str
    userId: str


class ClariCall(TypedDict, total=False):
    id: str
    title: str
    startTime: str
    endTime: str
    duration: int
    participants: list[ClariParticipant]
    recordingUrl: str
    status: str


class ClariSegment(TypedDict, total=False):
    speakerId: str
    speakerName: str
    speakerEmail: str
    text: str
    startTime: int
    endTime: int
    confidence: float


def _to_call(call: ClariCall) -> Call:
    start = parse_timestamp(call["startTime"])
    end = parse_timestamp(call.get("endTime") or call["startTime"])
    duration = call.get("duration")
    if duration is None:
        duration = int((end - start).total_seconds())
    return Call(
        id=str(call["id"]),
        title=call.get("title") or "Untitled call",
        start_time=start,
        end_time=end,
        duration=int(duration),
        platform="clari",
        attendees=tuple(
            Attendee(
                email=p["email"],
                name=p.get("name"),
                role="host" if p.get("role") == "host" else "participant",
                company=p.get("company"),
            )
            for p in call.get("participants") or []
            if p.get("email")
        ),
        recording_url=call.get("recordingUrl"),
    )


def _to_segments(raw: list[ClariSegment]) -> list[Segment]:
    return [
        Segment(
            speaker=s.get("speakerName") or str(s.get("speakerId", "unknown")),
            speaker_email=s.get("speakerEmail"),
            text=s.get("text", ""),
            start_ms=int(s.get("startTime", 0)),
            end_ms=int(s.get("endTime", 0)),
            confidence=s.get("confidence"),
        )
        for s in raw
    ]


class ClariAdapter(PlatformAdapter):
    name = "clari"
    DEFAULT_BASE_URL = "https://api.clari.com"
    page_size = 100

    @classmethod
    def default_rate_limiter(cls) -> RateLimiter:
        return RateLimiter.per_second(10)

    def _apply_credentials(self, credentials: Credentials):
        if not credentials.api_key:
            raise AuthConfigError(
                "Missing Clari API key. Set CLARI_API_KEY or add it to credentials.json"
            )
        self._session.headers["Authorization"] = f"Bearer {credentials.api_key}"
        if credentials.org_password:
            self._session.headers["X-Org-Password"] = credentials.org_password
        else:
            self._session.headers.pop("X-Org-Password", None)

    def _ping(self):
        window = CallWindow.last_days(1)
        self._request("GET", "/v1/calls", params={
            "startDate": window.start.isoformat(),
            "endDate": window.end.isoformat(),
            "limit": 1,
        })

    def _fetch_page(
        self, window: CallWindow, cursor: Cursor, page_size: int
    ) -> tuple[list[Call], Cursor]:
        offset = int(cursor or 0)
        data = self._request("GET", "/v1/calls", params={
            "startDate": window.start.isoformat(),
            "endDate": window.end.isoformat(),
            "limit": page_size,
            "offset": offset,
            "status": "completed",
        })
        raw = data.get("calls") or []
        next_cursor = offset + len(raw) if data.get("hasMore") else None
        return [_to_call(c) for c in raw], next_cursor

    def get_transcript(self, call_id: str) -> Transcript:
        self._ensure_authenticated()
        call = self._request("GET", f"/v1/calls/{call_id}").get("call")
        if not call:
            raise NotFoundError(f"Clari call {call_id} not found")
        body = self._request("GET", f"/v1/calls/{call_id}/transcript")
        segments = body.get("segments")
        if not segments:
            raise NotFoundError(f"Clari has no transcript for call {call_id} yet")
        return Transcript(call=_to_call(call), segments=_to_segments(segments))

    def get_ai_content(self, call_id: str) -> dict | None:
        self._ensure_authenticated()
        return self._request("GET", f"/v1/calls/{call_id}/insights") or None

    def setup_webhook(self, url: str):
        try:
            self._ensure_authenticated()
            self._request("POST", "/v1/webhooks", json={
                "url": url,
                "events": WEBHOOK_EVENTS,
                "active": True,
            })
            log.info("Clari webhook registered for %s", url)
        except CallSifterError as e:
            log.error("Failed to register Clari webhook: %s", e)
