"""
Platform adapter contract and the HTTP machinery shared by all vendors.

Every adapter speaks only the normalized data model: vendor JSON is
translated inside the adapter and never crosses this boundary.
Pagination is driven here, once, on top of a vendor-specific
``_fetch_page``; pacing and error mapping live in ``_request``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

import requests

from callsifter.config import resolve_credentials
from callsifter.errors import (
    AuthConfigError,
    NotFoundError,
    PlatformAPIError,
    TransientError,
)
from callsifter.platforms.ratelimit import RateLimiter
from callsifter.storage.models import Call, CallWindow, Credentials, Transcript

log = logging.getLogger(__name__)

Cursor = Union[str, int, None]
CredentialResolver = Callable[[str], Optional[Credentials]]


def parse_timestamp(value: Any) -> datetime:
    """Parse a vendor timestamp (ISO-8601 string or epoch milliseconds) as UTC."""
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, (int, float)):
        moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value:
        try:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise PlatformAPIError(f"Unparseable timestamp: {value!r}") from e
    else:
        raise PlatformAPIError(f"Unparseable timestamp: {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class PlatformAdapter(ABC):
    """Base class for one vendor's call-intelligence API."""

    name: str = ""
    DEFAULT_BASE_URL: str = ""
    page_size: int = 100

    def __init__(
        self,
        base_url: str | None = None,
        resolver: CredentialResolver = resolve_credentials,
        session: requests.Session | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.credentials: Credentials | None = None
        self.rate_limiter = rate_limiter or self.default_rate_limiter()
        self._resolver = resolver
        self._session = session or requests.Session()

    @classmethod
    def default_rate_limiter(cls) -> RateLimiter:
        return RateLimiter()

    # ── Contract ───────────────────────────────────────────────────

    def authenticate(self, credentials: Credentials | None = None):
        """Establish auth state. Calling again re-authenticates from scratch."""
        if credentials is None:
            credentials = self._resolver(self.name)
        if credentials is None:
            raise AuthConfigError(f"No credentials configured for {self.name}")
        self.credentials = credentials
        self._apply_credentials(credentials)
        log.info("Authenticated with %s", self.name)

    def test_connection(self) -> bool:
        """Cheapest authenticated call. Never raises."""
        try:
            self._ensure_authenticated()
            self._ping()
            return True
        except Exception as e:
            log.warning("%s connection test failed: %s", self.name, e)
            return False

    def list_calls(self, window: CallWindow, limit: int = 100) -> list[Call]:
        """Calls starting in [window.start, window.end), ascending, at most ``limit``.

        Pages are fetched sequentially. A failing page aborts the whole
        listing; nothing gathered so far is returned.
        """
        if limit <= 0:
            return []
        self._ensure_authenticated()

        calls: list[Call] = []
        cursor: Cursor = None
        pages = 0
        while len(calls) < limit:
            page_size = min(self.page_size, limit - len(calls))
            page, cursor = self._fetch_page(window, cursor, page_size)
            pages += 1
            calls.extend(c for c in page if window.contains(c.start_time))
            if cursor is None or not page:
                break

        calls.sort(key=lambda c: c.start_time)
        log.debug("%s: listed %d calls over %d pages", self.name, len(calls), pages)
        return calls[:limit]

    @abstractmethod
    def get_transcript(self, call_id: str) -> Transcript:
        """Fetch metadata and transcript; NotFoundError if none exists yet."""

    def get_ai_content(self, call_id: str) -> dict | None:
        """Vendor AI summary/highlights. Callers treat failures as absent."""
        return None

    def setup_webhook(self, url: str):
        """Register a webhook; vendors without an API get logged instructions."""
        log.info("Configure the %s webhook manually to POST to %s", self.name, url)

    # ── Vendor hooks ───────────────────────────────────────────────

    @abstractmethod
    def _apply_credentials(self, credentials: Credentials):
        """Turn credentials into session headers / tokens."""

    @abstractmethod
    def _fetch_page(
        self, window: CallWindow, cursor: Cursor, page_size: int
    ) -> tuple[list[Call], Cursor]:
        """Fetch one page of calls; return (calls, next cursor or None)."""

    @abstractmethod
    def _ping(self):
        """Issue the cheapest authenticated request."""

    def _ensure_authenticated(self):
        if self.credentials is None:
            self.authenticate()

    def _on_auth_failure(self):
        """Forget cached auth state after a 401."""

    # ── HTTP ───────────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str = "",
        *,
        url: str | None = None,
        params: dict | None = None,
        json: Any = None,
        data: Any = None,
        headers: dict | None = None,
    ) -> dict:
        self.rate_limiter.acquire()
        target = url or f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method,
                target,
                params=params,
                json=json,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientError(f"{self.name} request failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise PlatformAPIError(f"{self.name} request failed: {e}") from e

        self._raise_for_status(response, target)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise PlatformAPIError(f"{self.name} returned invalid JSON from {target}") from e

    def _raise_for_status(self, response, target: str):
        status = response.status_code
        if status < 400:
            return

        message = self._error_message(response) or f"HTTP {status}"
        if status in (401, 403):
            self._on_auth_failure()
            raise AuthConfigError(f"{self.name} authentication failed: {message}")
        if status == 404:
            raise NotFoundError(f"{self.name} has no resource at {target}")
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise TransientError(
                f"{self.name} rate limit exceeded",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status >= 500:
            raise TransientError(f"{self.name} server error: {message}")
        raise PlatformAPIError(f"{self.name} API error: {message}", status_code=status)

    @staticmethod
    def _error_message(response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                return error.get("message")
            if isinstance(error, str):
                return error
            if body.get("errors"):
                return "; ".join(
                    str(e.get("message", e)) if isinstance(e, dict) else str(e)
                    for e in body["errors"]
                )
        return None

    def close(self):
        self._session.close()
