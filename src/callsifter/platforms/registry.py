"""Resolve platform names to cached, authenticated adapters."""

from __future__ import annotations

import logging
from typing import Callable

from callsifter.config import (
    PLANNED_PLATFORMS,
    Settings,
    resolve_credentials,
)
from callsifter.errors import UnsupportedPlatformError
from callsifter.platforms.base import CredentialResolver, PlatformAdapter
from callsifter.platforms.clari import ClariAdapter
from callsifter.platforms.fireflies import PAGE_DELAY, FirefliesAdapter
from callsifter.platforms.gong import GongAdapter
from callsifter.platforms.ratelimit import RateLimiter

log = logging.getLogger(__name__)

AdapterFactory = Callable[..., PlatformAdapter]

DEFAULT_FACTORIES: dict[str, AdapterFactory] = {
    "gong": GongAdapter,
    "clari": ClariAdapter,
    "fireflies": FirefliesAdapter,
}


class AdapterRegistry:
    """One adapter per platform, built and authenticated on first use.

    Construct one per process or worker and pass it to whatever needs
    adapters.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        resolver: CredentialResolver = resolve_credentials,
        factories: dict[str, AdapterFactory] | None = None,
    ):
        self.settings = settings or Settings()
        self.resolver = resolver
        self.factories = dict(factories) if factories is not None else dict(DEFAULT_FACTORIES)
        self._instances: dict[str, PlatformAdapter] = {}

    def supported_platforms(self) -> list[str]:
        return sorted(self.factories)

    def get(self, platform: str) -> PlatformAdapter:
        key = platform.strip().lower()
        if key in self._instances:
            return self._instances[key]

        if key not in self.factories:
            if key in PLANNED_PLATFORMS:
                raise UnsupportedPlatformError(f"Platform {key} not yet implemented")
            raise UnsupportedPlatformError(f"Unsupported platform: {platform}")

        adapter = self._build(key)
        adapter.authenticate()
        self._instances[key] = adapter
        log.info("Initialized %s adapter", key)
        return adapter

    def _build(self, platform: str) -> PlatformAdapter:
        kwargs = {
            "base_url": self.settings.base_urls.get(platform),
            "resolver": self.resolver,
        }
        if platform == "fireflies" and self.factories[platform] is FirefliesAdapter:
            kwargs["rate_limiter"] = RateLimiter(
                min_interval=PAGE_DELAY,
                daily_quota=self.settings.fireflies_daily_quota,
            )
        return self.factories[platform](**kwargs)

    def clear(self):
        """Close and drop all cached adapters."""
        for adapter in self._instances.values():
            adapter.close()
        self._instances.clear()
