"""Normalized data model shared by adapters, sync and association."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

SEGMENT_SEPARATOR = " "


@dataclass(frozen=True)
class Attendee:
    email: str
    name: Optional[str] = None
    role: str = "participant"  # "host" | "participant"
    company: Optional[str] = None

    @property
    def domain(self) -> Optional[str]:
        """Lower-cased email domain, or None if the email has none."""
        if not self.email or "@" not in self.email:
            return None
        domain = self.email.rsplit("@", 1)[1].strip().lower()
        return domain or None


@dataclass(frozen=True)
class Call:
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    duration: int  # seconds
    platform: str
    attendees: tuple[Attendee, ...] = ()
    recording_url: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        """Persisted identity: vendors may reuse id spaces."""
        return (self.platform, self.id)


@dataclass(frozen=True)
class Segment:
    speaker: str
    text: str
    start_ms: int
    end_ms: int
    speaker_email: Optional[str] = None
    confidence: Optional[float] = None

    def __post_init__(self):
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Segment confidence out of range: {self.confidence}")


@dataclass
class Transcript:
    call: Call
    segments: list[Segment] = field(default_factory=list)
    ai_content: Optional[dict[str, Any]] = None

    @property
    def call_id(self) -> str:
        return self.call.id

    @property
    def platform(self) -> str:
        return self.call.platform

    @property
    def full_text(self) -> str:
        return SEGMENT_SEPARATOR.join(s.text for s in self.segments)


@dataclass
class Account:
    id: int
    name: str
    domain: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None


class RuleType(str, Enum):
    DOMAIN = "domain"
    EMAIL_PATTERN = "email_pattern"
    TITLE_PATTERN = "title_pattern"
    MANUAL = "manual"


@dataclass
class AssociationRule:
    id: str
    name: str
    type: RuleType
    pattern: Optional[str] = None
    account_id: Optional[int] = None
    priority: int = 0
    active: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "pattern": self.pattern,
            "accountId": self.account_id,
            "priority": self.priority,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AssociationRule":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            type=RuleType(data["type"]),
            pattern=data.get("pattern"),
            account_id=data.get("accountId"),
            priority=int(data.get("priority", 0)),
            active=bool(data.get("active", True)),
        )


@dataclass
class AssociationResult:
    account_id: int
    confidence: float
    rule_name: str
    suggestions: list[str] = field(default_factory=list)


@dataclass
class AuditRecord:
    transcript_id: int
    old_account_id: Optional[int]
    new_account_id: int
    reason: str
    actor: str
    timestamp: str


@dataclass(frozen=True)
class CallWindow:
    """Half-open time window [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError("CallWindow end must be after start")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    @classmethod
    def last_days(cls, days: int, now: datetime | None = None) -> "CallWindow":
        end = now or datetime.now(timezone.utc)
        return cls(start=end - timedelta(days=days), end=end)


@dataclass
class Credentials:
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    org_password: Optional[str] = None
