"""Error taxonomy shared by adapters, the sync engine and the web layer."""

from __future__ import annotations


class CallSifterError(Exception):
    """Base class for all CallSifter errors."""


class AuthConfigError(CallSifterError):
    """Credentials are missing, invalid or were rejected by the vendor."""


class TransientError(CallSifterError):
    """Rate-limited or temporarily failing vendor call; safe to retry."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotFoundError(CallSifterError):
    """The vendor or the store has no such record (yet)."""


class ValidationError(CallSifterError):
    """Malformed input at a boundary, e.g. a webhook payload."""


class UnsupportedPlatformError(ValidationError):
    """The platform name is unknown or not implemented yet."""


class PersistenceConflict(CallSifterError):
    """A uniqueness constraint rejected an insert."""


class PlatformAPIError(CallSifterError):
    """Non-retryable vendor failure that is not auth or not-found."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SignatureError(CallSifterError):
    """A webhook signature did not match the configured secret."""
