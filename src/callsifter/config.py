"""Configuration and constants for CallSifter."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from callsifter.storage.models import AssociationRule, Credentials, RuleType

# Paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_DB_PATH = DEFAULT_DATA_DIR / "callsifter.db"

# Registries (credentials fallback and association rules)
CREDENTIALS_JSON_PATH = PROJECT_ROOT / "credentials.json"
RULES_JSON_PATH = PROJECT_ROOT / "rules.json"

SUPPORTED_PLATFORMS = ["gong", "clari", "fireflies"]
PLANNED_PLATFORMS = ["fathom", "otter"]

DEFAULT_BASE_URLS = {
    "gong": "https://api.gong.io/v2",
    "clari": "https://api.clari.com",
    "fireflies": "https://api.fireflies.ai/graphql",
}

# Personal/webmail providers never used as an account key
PERSONAL_EMAIL_DOMAINS = frozenset({
    "gmail.com",
    "yahoo.com",
    "hotmail.com",
    "outlook.com",
    "icloud.com",
    "me.com",
    "aol.com",
    "protonmail.com",
    "tutanota.com",
})

# Fixed confidence per rule type
RULE_CONFIDENCE = {
    RuleType.MANUAL: 1.0,
    RuleType.DOMAIN: 0.9,
    RuleType.EMAIL_PATTERN: 0.8,
    RuleType.TITLE_PATTERN: 0.7,
}
FALLBACK_CONFIDENCE = 0.3
MAX_DOMAIN_CONFIDENCE = 0.9

# Sync defaults
SYNC_DAYS = 1
SYNC_LIMIT = 100
SYNC_MAX_ATTEMPTS = 3
SYNC_BACKOFF_SECONDS = 1.0

# Queue transport
QUEUE_MAX_RECEIVES = 5
QUEUE_DEDUP_WINDOW_SECONDS = 300
# Claimed messages not acked or failed within this many seconds are redelivered
QUEUE_VISIBILITY_TIMEOUT_SECONDS = 900

# Vendor pacing
FIREFLIES_DAILY_QUOTA = 50


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass
class Settings:
    """Runtime settings, normally built from the environment."""

    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    internal_domains: frozenset[str] = frozenset()
    sync_days: int = SYNC_DAYS
    sync_limit: int = SYNC_LIMIT
    max_attempts: int = SYNC_MAX_ATTEMPTS
    backoff_seconds: float = SYNC_BACKOFF_SECONDS
    queue_max_receives: int = QUEUE_MAX_RECEIVES
    queue_visibility_timeout: float = QUEUE_VISIBILITY_TIMEOUT_SECONDS
    fireflies_daily_quota: int = FIREFLIES_DAILY_QUOTA
    base_urls: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_BASE_URLS))
    gong_webhook_secret: str | None = None

    @property
    def excluded_domains(self) -> frozenset[str]:
        """Domains never used for domain-based association."""
        return PERSONAL_EMAIL_DOMAINS | self.internal_domains


def load_settings() -> Settings:
    """Build Settings from environment variables, falling back to defaults."""
    db_path = os.environ.get("CALLSIFTER_DB_PATH")
    internal = os.environ.get("CALLSIFTER_INTERNAL_DOMAINS", "")

    base_urls = dict(DEFAULT_BASE_URLS)
    for platform in SUPPORTED_PLATFORMS:
        override = os.environ.get(f"{platform.upper()}_BASE_URL")
        if override:
            base_urls[platform] = override

    return Settings(
        db_path=Path(db_path) if db_path else DEFAULT_DB_PATH,
        internal_domains=frozenset(
            d.strip().lower() for d in internal.split(",") if d.strip()
        ),
        sync_days=_env_int("SYNC_DAYS", SYNC_DAYS),
        sync_limit=_env_int("SYNC_LIMIT", SYNC_LIMIT),
        max_attempts=_env_int("SYNC_MAX_ATTEMPTS", SYNC_MAX_ATTEMPTS),
        backoff_seconds=_env_float("SYNC_BACKOFF_SECONDS", SYNC_BACKOFF_SECONDS),
        queue_max_receives=_env_int("QUEUE_MAX_RECEIVES", QUEUE_MAX_RECEIVES),
        queue_visibility_timeout=_env_float(
            "QUEUE_VISIBILITY_TIMEOUT_SECONDS", QUEUE_VISIBILITY_TIMEOUT_SECONDS
        ),
        fireflies_daily_quota=_env_int("FIREFLIES_DAILY_QUOTA", FIREFLIES_DAILY_QUOTA),
        base_urls=base_urls,
        gong_webhook_secret=os.environ.get("GONG_WEBHOOK_SECRET") or None,
    )


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def _load_credentials_registry() -> dict:
    """Load the credentials.json registry file."""
    if CREDENTIALS_JSON_PATH.exists():
        return json.loads(CREDENTIALS_JSON_PATH.read_text())
    return {}


def _credentials_from_env(platform: str) -> Credentials | None:
    env = os.environ
    if platform == "gong":
        # Basic auth takes precedence over OAuth
        if env.get("GONG_API_KEY") and env.get("GONG_API_SECRET"):
            return Credentials(api_key=env["GONG_API_KEY"], api_secret=env["GONG_API_SECRET"])
        if env.get("GONG_CLIENT_ID") and env.get("GONG_CLIENT_SECRET"):
            return Credentials(client_id=env["GONG_CLIENT_ID"], client_secret=env["GONG_CLIENT_SECRET"])
        return None
    if platform == "clari":
        if env.get("CLARI_API_KEY"):
            return Credentials(api_key=env["CLARI_API_KEY"], org_password=env.get("CLARI_ORG_PASSWORD"))
        return None
    if platform == "fireflies":
        if env.get("FIREFLIES_API_KEY"):
            return Credentials(api_key=env["FIREFLIES_API_KEY"])
        return None
    return None


def resolve_credentials(platform: str) -> Credentials | None:
    """Resolve credentials for a platform: environment first, then credentials.json."""
    creds = _credentials_from_env(platform)
    if creds is not None:
        return creds

    entry = _load_credentials_registry().get(platform)
    if not entry:
        return None
    return Credentials(
        api_key=entry.get("apiKey"),
        api_secret=entry.get("apiSecret"),
        client_id=entry.get("clientId"),
        client_secret=entry.get("clientSecret"),
        org_password=entry.get("orgPassword"),
    )


# ---------------------------------------------------------------------------
# Association rules registry
# ---------------------------------------------------------------------------


def load_rules(path: Path | None = None) -> list[AssociationRule]:
    """Load association rules from the rules.json registry."""
    path = path or RULES_JSON_PATH
    if not path.exists():
        return []
    entries = json.loads(path.read_text()).get("rules", [])
    return [AssociationRule.from_dict(e) for e in entries]


def save_rules(rules: list[AssociationRule], path: Path | None = None):
    """Save association rules to the rules.json registry."""
    path = path or RULES_JSON_PATH
    payload = {"rules": [r.to_dict() for r in rules]}
    path.write_text(json.dumps(payload, indent=2) + "\n")
