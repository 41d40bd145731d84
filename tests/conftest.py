"""Shared test fixtures for CallSifter."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from callsifter.association.engine import AccountAssociationEngine
from callsifter.errors import NotFoundError
from callsifter.platforms.base import PlatformAdapter
from callsifter.platforms.registry import AdapterRegistry
from callsifter.storage.database import Database
from callsifter.storage.models import (
    Attendee,
    Call,
    CallWindow,
    Credentials,
    Segment,
    Transcript,
)
from callsifter.storage.repository import Repository
from callsifter.sync.engine import RetryPolicy, SyncEngine

BASE_TIME = datetime(2024, 3, 15, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_db(tmp_path):
    """Temp database with schema initialized."""
    db_path = tmp_path / "test.db"
    with Database(db_path) as db:
        yield db


@pytest.fixture
def repo(tmp_db):
    """Repository backed by the temp database."""
    return Repository(tmp_db)


def build_call(
    call_id: str = "call-1",
    emails=("jane@roundtrip.io", "rep@ourcompany.com"),
    title: str = "Roundtrip discovery call",
    platform: str = "gong",
    start: datetime = BASE_TIME,
    companies: dict | None = None,
) -> Call:
    companies = companies or {}
    return Call(
        id=call_id,
        title=title,
        start_time=start,
        end_time=start + timedelta(minutes=30),
        duration=1800,
        platform=platform,
        attendees=tuple(
            Attendee(email=e, name=e.split("@")[0].title(), company=companies.get(e))
            for e in emails
        ),
        recording_url=f"https://example.test/recordings/{call_id}",
    )


def build_transcript(call: Call | None = None, **kwargs) -> Transcript:
    call = call or build_call(**kwargs)
    return Transcript(
        call=call,
        segments=[
            Segment(speaker="Jane", speaker_email="jane@roundtrip.io",
                    text="We need better pipeline visibility.", start_ms=0, end_ms=4000),
            Segment(speaker="Rep", speaker_email="rep@ourcompany.com",
                    text="Let me walk you through the dashboard.", start_ms=4000, end_ms=9000,
                    confidence=0.92),
        ],
    )


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_call():
    return build_call


@pytest.fixture
def make_transcript():
    return build_transcript


@pytest.fixture
def sample_transcript():
    return build_transcript()


@pytest.fixture
def window():
    return CallWindow(start=BASE_TIME - timedelta(days=1), end=BASE_TIME + timedelta(days=1))


# ---------------------------------------------------------------------------
# HTTP fakes
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status_code: int = 200, body=None, headers: dict | None = None, text=None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}
        if text is not None:
            self.content = text.encode()
        elif body is None:
            self.content = b""
        else:
            self.content = json.dumps(body).encode()

    def json(self):
        return json.loads(self.content)


class FakeSession:
    """Stands in for requests.Session; replies with queued responses in order."""

    def __init__(self, responses=None):
        self.headers: dict = {}
        self.responses = list(responses or [])
        self.requests: list[dict] = []
        self.closed = False

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_response():
    return FakeResponse


# ---------------------------------------------------------------------------
# Adapter fake
# ---------------------------------------------------------------------------


class FakeAdapter(PlatformAdapter):
    """In-memory adapter. Failures are queued per call id and raised in order."""

    name = "gong"

    def __init__(self, calls=(), **kwargs):
        kwargs.setdefault("resolver", lambda platform: Credentials(api_key="test-key"))
        kwargs.setdefault("session", FakeSession())
        super().__init__(**kwargs)
        self.calls = {c.id: c for c in calls}
        self.transcripts: dict[str, Transcript] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.list_failures: list[Exception] = []
        self.ai_content: dict[str, dict] = {}
        self.ai_error: Exception | None = None
        self.auth_count = 0
        self.transcript_requests: list[str] = []

    def add(self, transcript: Transcript):
        self.calls[transcript.call_id] = transcript.call
        self.transcripts[transcript.call_id] = transcript

    def _apply_credentials(self, credentials):
        self.auth_count += 1

    def _ping(self):
        pass

    def _fetch_page(self, window, cursor, page_size):
        if self.list_failures:
            raise self.list_failures.pop(0)
        return list(self.calls.values()), None

    def get_transcript(self, call_id):
        self.transcript_requests.append(call_id)
        pending = self.failures.get(call_id)
        if pending:
            raise pending.pop(0)
        if call_id not in self.transcripts:
            raise NotFoundError(f"No transcript for {call_id}")
        return self.transcripts[call_id]

    def get_ai_content(self, call_id):
        if self.ai_error is not None:
            raise self.ai_error
        return self.ai_content.get(call_id)


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def registry(fake_adapter):
    return AdapterRegistry(factories={"gong": lambda **kwargs: fake_adapter})


@pytest.fixture
def association(repo):
    return AccountAssociationEngine(repo)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(registry, repo, association, sleeps):
    return SyncEngine(
        registry, repo, association,
        retry=RetryPolicy(max_attempts=3, base_delay=1.0),
        sleep=sleeps.append,
    )


@pytest.fixture
def config_paths(tmp_path, monkeypatch):
    """Point the credential and rule registries at temp files."""
    import callsifter.config as config_mod

    monkeypatch.setattr(config_mod, "CREDENTIALS_JSON_PATH", tmp_path / "credentials.json")
    monkeypatch.setattr(config_mod, "RULES_JSON_PATH", tmp_path / "rules.json")
    monkeypatch.setattr(config_mod, "PROJECT_ROOT", tmp_path)
    for var in (
        "GONG_API_KEY", "GONG_API_SECRET", "GONG_CLIENT_ID", "GONG_CLIENT_SECRET",
        "CLARI_API_KEY", "CLARI_ORG_PASSWORD", "FIREFLIES_API_KEY",
        "CALLSIFTER_DB_PATH", "CALLSIFTER_INTERNAL_DOMAINS", "GONG_WEBHOOK_SECRET",
    ):
        monkeypatch.delenv(var, raising=False)
    return tmp_path
