"""
Gong adapter.

Supports Basic auth (access key + secret) and OAuth client credentials.
Calls are listed with cursor paging; participants and transcripts come
from the ``/calls/extensive`` and ``/calls/transcript`` endpoints, which
lets speakers be joined to attendee emails via ``speakerId``.
"""

from __future__ import annotations

import base64
import logging
import time
from datetime import timedelta
from typing import Optional, TypedDict

from callsifter.errors import AuthConfigError, NotFoundError
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

TOKEN_URL = "https://app.gong.io/oauth2/token"
TOKEN_SCOPE = "api:calls:read:basic api:calls:read:extensive api:calls:read:transcript"
# Refresh this many seconds before the vendor-reported expiry
TOKEN_EXPIRY_MARGIN = 60


class GongParty(TypedDict, total=False):
    id: str
    speakerId: str
    emailAddress: str
    name: str
    userId: str
    affiliation: str
    companyName: str


class GongCallMeta(TypedDict, total=False):
    id: str
    title: str
    started: str
    duration: int
    url: str
    primaryUserId: str
    media: str


class GongSentence(TypedDict):
    start: int
    end: int
    text: str


class GongMonologue(TypedDict, total=False):
    speakerId: str
    topic: str
    sentences: list[GongSentence]


def _to_attendees(parties: list[GongParty], primary_user_id: Optional[str]) -> tuple[Attendee, ...]:
    attendees = []
    for party in parties:
        email = party.get("emailAddress")
        if not email:
            # Dial-in parties without an address cannot be joined on
            continue
        is_host = primary_user_id is not None and party.get("userId") == primary_user_id
        attendees.append(Attendee(
            email=email,
            name=party.get("name"),
            role="host" if is_host else "participant",
            company=party.get("companyName"),
        ))
    return tuple(attendees)


def _to_call(meta: GongCallMeta, parties: list[GongParty] | None = None) -> Call:
    start = parse_timestamp(meta.get("started") or meta.get("scheduled"))
    duration = int(meta.get("duration") or 0)
    return Call(
        id=str(meta["id"]),
        title=meta.get("title") or "Untitled call",
        start_time=start,
        end_time=start + timedelta(seconds=duration),
        duration=duration,
        platform="gong",
        attendees=_to_attendees(parties or [], meta.get("primaryUserId")),
        recording_url=meta.get("url"),
    )


def _to_segments(monologues: list[GongMonologue], parties: list[GongParty]) -> list[Segment]:
    by_speaker = {p["speakerId"]: p for p in parties if p.get("speakerId")}
    segments = []
    for mono in monologues:
        speaker_id = str(mono.get("speakerId", "unknown"))
        party = by_speaker.get(speaker_id)
        speaker = (party or {}).get("name") or speaker_id
        email = (party or {}).get("emailAddress")
        for sentence in mono.get("sentences", []):
            segments.append(Segment(
                speaker=speaker,
                speaker_email=email,
                text=sentence["text"],
                start_ms=int(sentence["start"]),
                end_ms=int(sentence["end"]),
            ))
    return segments


class GongAdapter(PlatformAdapter):
    name = "gong"
    DEFAULT_BASE_URL = "https://api.gong.io/v2"
    page_size = 100

    def __init__(self, *args, token_url: str = TOKEN_URL, clock=time.time, **kwargs):
        super().__init__(*args, **kwargs)
        self.token_url = token_url
        self.auth_method: str | None = None
        self._access_token: str | None = None
        self._token_expiry: float = 0.0
        self._clock = clock

    @classmethod
    def default_rate_limiter(cls) -> RateLimiter:
        return RateLimiter.per_second(3)

    # ── Auth ───────────────────────────────────────────────────────

    def _apply_credentials(self, credentials: Credentials):
        self._access_token = None
        self._token_expiry = 0.0
        if credentials.api_key and credentials.api_secret:
            self.auth_method = "basic"
            token = base64.b64encode(
                f"{credentials.api_key}:{credentials.api_secret}".encode()
            ).decode()
            self._session.headers["Authorization"] = f"Basic {token}"
        elif credentials.client_id and credentials.client_secret:
            self.auth_method = "oauth"
            self._fetch_token()
        else:
            self.auth_method = None
            raise AuthConfigError(
                "Missing Gong credentials: provide GONG_API_KEY and GONG_API_SECRET "
                "(Basic auth) or GONG_CLIENT_ID and GONG_CLIENT_SECRET (OAuth)"
            )

    def _fetch_token(self):
        creds = self.credentials
        data = self._request(
            "POST",
            url=self.token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": creds.client_id,
                "client_secret": creds.client_secret,
                "scope": TOKEN_SCOPE,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = data.get("access_token")
        if not token:
            raise AuthConfigError("Gong OAuth response did not include an access token")
        self._access_token = token
        self._token_expiry = self._clock() + int(data.get("expires_in", 3600)) - TOKEN_EXPIRY_MARGIN
        self._session.headers["Authorization"] = f"Bearer {token}"
        log.info("Gong OAuth token obtained")

    def _ensure_authenticated(self):
        if self.credentials is None:
            self.authenticate()
        elif self.auth_method == "oauth" and (
            self._access_token is None or self._clock() >= self._token_expiry
        ):
            log.info("Gong OAuth token expired, refreshing")
            self._fetch_token()

    def _on_auth_failure(self):
        self._access_token = None
        self._token_expiry = 0.0

    def _ping(self):
        self._request("GET", "/users", params={"limit": 1})

    # ── Calls ──────────────────────────────────────────────────────

    def _fetch_page(
        self, window: CallWindow, cursor: Cursor, page_size: int
    ) -> tuple[list[Call], Cursor]:
        params = {
            "fromDateTime": window.start.isoformat(),
            "toDateTime": window.end.isoformat(),
        }
        if cursor:
            params["cursor"] = cursor
        data = self._request("GET", "/calls", params=params)

        calls = [_to_call(meta) for meta in data.get("calls") or []]
        next_cursor = (data.get("records") or {}).get("cursor") or data.get("cursor")
        return calls, next_cursor

    def _extensive_call(self, call_id: str, content: bool = False) -> dict:
        selector = {"exposedFields": {"parties": True}}
        if content:
            selector["exposedFields"]["content"] = {
                "brief": True,
                "highlights": True,
                "keyPoints": True,
                "outline": True,
            }
        data = self._request(
            "POST",
            "/calls/extensive",
            json={"filter": {"callIds": [call_id]}, "contentSelector": selector},
        )
        calls = data.get("calls") or []
        if not calls:
            raise NotFoundError(f"Gong call {call_id} not found")
        return calls[0]

    def get_transcript(self, call_id: str) -> Transcript:
        self._ensure_authenticated()
        extensive = self._extensive_call(call_id)
        parties = extensive.get("parties") or []

        data = self._request(
            "POST", "/calls/transcript", json={"filter": {"callIds": [call_id]}}
        )
        entries = [t for t in data.get("callTranscripts") or [] if str(t.get("callId")) == str(call_id)]
        if not entries or not entries[0].get("transcript"):
            raise NotFoundError(f"Gong has no transcript for call {call_id} yet")

        return Transcript(
            call=_to_call(extensive["metaData"], parties),
            segments=_to_segments(entries[0]["transcript"], parties),
        )

    def get_ai_content(self, call_id: str) -> dict | None:
        self._ensure_authenticated()
        content = self._extensive_call(call_id, content=True).get("content")
        return content or None

    def setup_webhook(self, url: str):
        # Gong has no webhook API; rules are created in the admin console
        log.info("Gong webhooks must be configured manually: %s", url)
        log.info("  Settings > Ecosystem > Automation rules > Add rule")
        log.info("  Trigger: call processing completed; action: POST to %s", url)
