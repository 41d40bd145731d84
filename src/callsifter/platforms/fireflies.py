"""
Fireflies adapter.

Fireflies exposes a single GraphQL endpoint. Errors usually come back
as HTTP 200 with an ``errors`` list, so every response body is checked
before ``data`` is read. The free tier allows only a small number of
requests per day, enforced by the adapter's rate limiter.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, TypedDict

from callsifter.config import FIREFLIES_DAILY_QUOTA
from callsifter.errors import (
    AuthConfigError,
    CallSifterError,
    NotFoundError,
    PlatformAPIError,
    TransientError,
)
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

# Minimum spacing between requests, in seconds
PAGE_DELAY = 1.2

_ATTENDEE_FIELDS = """
    meeting_attendees {
      displayName
      email
      name
    }
"""

_SUMMARY_FIELDS = """
    summary {
      overview
      action_items
      outline
      keywords
      notes
    }
"""

LIST_QUERY = """
query ListTranscripts($from: DateTime!, $to: DateTime!, $limit: Int!, $cursor: String) {
  transcripts(from_date: $from, to_date: $to, limit: $limit, cursor: $cursor) {
    edges {
      node {
        id
        title
        date
        duration
        %s
        audio_url
        video_url
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
""" % _ATTENDEE_FIELDS

TRANSCRIPT_QUERY = """
query GetTranscript($id: String!) {
  transcript(id: $id) {
    id
    title
    date
    duration
    %s
    sentences {
      index
      speaker_name
      speaker_email
      text
      start_time
      end_time
    }
    audio_url
    video_url
  }
}
""" % _ATTENDEE_FIELDS

SUMMARY_QUERY = """
query GetSummary($id: String!) {
  transcript(id: $id) {
    %s
  }
}
""" % _SUMMARY_FIELDS

USER_QUERY = "query TestConnection { user { id email } }"

CREATE_WEBHOOK_MUTATION = """
mutation CreateWebhook($url: String!, $events: [String!]!) {
  createWebhook(url: $url, events: $events) {
    id
    url
    events
    active
  }
}
"""


class FirefliesAttendee(TypedDict, total=False):
    displayName: str
    email: str
    name: str


class FirefliesSentence(TypedDict, total=False):
    index: int
    speaker_name: str
    speaker_email: str
    text: str
    start_time: float  # seconds
    end_time: float


class FirefliesTranscript(TypedDict, total=False):
    id: str
    title: str
    date: Any  # epoch ms or ISO string
    duration: float  # seconds
    meeting_attendees: list[FirefliesAttendee]
    sentences: list[FirefliesSentence]
    audio_url: str
    video_url: str


def _to_call(node: FirefliesTranscript) -> Call:
    start = parse_timestamp(node["date"])
    duration = int(round(float(node.get("duration") or 0)))
    return Call(
        id=str(node["id"]),
        title=node.get("title") or "Untitled meeting",
        start_time=start,
        end_time=start + timedelta(seconds=duration),
        duration=duration,
        platform="fireflies",
        # Fireflies does not distinguish hosts
        attendees=tuple(
            Attendee(email=a["email"], name=a.get("displayName") or a.get("name"))
            for a in node.get("meeting_attendees") or []
            if a.get("email")
        ),
        recording_url=node.get("audio_url") or node.get("video_url"),
    )


def _to_segments(
    sentences: list[FirefliesSentence], attendees: list[FirefliesAttendee]
) -> list[Segment]:
    by_name = {}
    for a in attendees:
        for key in ("displayName", "name"):
            if a.get(key) and a.get("email"):
                by_name.setdefault(a[key].strip().lower(), a["email"])

    segments = []
    for s in sentences:
        speaker = s.get("speaker_name") or "unknown"
        email = s.get("speaker_email") or by_name.get(speaker.strip().lower())
        segments.append(Segment(
            speaker=speaker,
            speaker_email=email,
            text=s.get("text", ""),
            start_ms=int(round(float(s.get("start_time", 0)) * 1000)),
            end_ms=int(round(float(s.get("end_time", 0)) * 1000)),
        ))
    return segments


class FirefliesAdapter(PlatformAdapter):
    name = "fireflies"
    DEFAULT_BASE_URL = "https://api.fireflies.ai/graphql"
    page_size = 50

    @classmethod
    def default_rate_limiter(cls) -> RateLimiter:
        return RateLimiter(min_interval=PAGE_DELAY, daily_quota=FIREFLIES_DAILY_QUOTA)

    def _apply_credentials(self, credentials: Credentials):
        if not credentials.api_key:
            raise AuthConfigError(
                "Missing Fireflies API key. Set FIREFLIES_API_KEY or add it to credentials.json"
            )
        self._session.headers["Authorization"] = f"Bearer {credentials.api_key}"

    def _graphql(self, query: str, variables: dict | None = None) -> dict:
        body = self._request("POST", json={"query": query, "variables": variables or {}})
        errors = body.get("errors")
        if errors:
            message = "; ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
            )
            lowered = message.lower()
            if "unauthorized" in lowered or "authentication" in lowered:
                self._on_auth_failure()
                raise AuthConfigError(f"Fireflies authentication failed: {message}")
            if "rate limit" in lowered or "too many requests" in lowered:
                raise TransientError(f"Fireflies rate limit exceeded: {message}")
            if "not found" in lowered:
                raise NotFoundError(f"Fireflies: {message}")
            raise PlatformAPIError(f"Fireflies API error: {message}")
        return body.get("data") or {}

    def _ping(self):
        if not self._graphql(USER_QUERY).get("user"):
            raise AuthConfigError("Fireflies returned no user for this API key")

    def _fetch_page(
        self, window: CallWindow, cursor: Cursor, page_size: int
    ) -> tuple[list[Call], Cursor]:
        data = self._graphql(LIST_QUERY, {
            "from": window.start.isoformat(),
            "to": window.end.isoformat(),
            "limit": page_size,
            "cursor": cursor,
        })
        listing = data.get("transcripts") or {}
        calls = [_to_call(edge["node"]) for edge in listing.get("edges") or []]
        page_info = listing.get("pageInfo") or {}
        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
        return calls, next_cursor

    def get_transcript(self, call_id: str) -> Transcript:
        self._ensure_authenticated()
        node = self._graphql(TRANSCRIPT_QUERY, {"id": call_id}).get("transcript")
        if not node:
            raise NotFoundError(f"Fireflies has no transcript {call_id}")
        sentences = node.get("sentences")
        if not sentences:
            raise NotFoundError(f"Fireflies transcript {call_id} has no sentences yet")
        return Transcript(
            call=_to_call(node),
            segments=_to_segments(sentences, node.get("meeting_attendees") or []),
        )

    def get_ai_content(self, call_id: str) -> dict | None:
        self._ensure_authenticated()
        node = self._graphql(SUMMARY_QUERY, {"id": call_id}).get("transcript") or {}
        return node.get("summary") or None

    def setup_webhook(self, url: str):
        try:
            self._ensure_authenticated()
            self._graphql(CREATE_WEBHOOK_MUTATION, {
                "url": url,
                "events": ["transcription_complete"],
            })
            log.info("Fireflies webhook registered for %s", url)
        except CallSifterError as e:
            log.error("Failed to register Fireflies webhook: %s", e)
