"""Administrative sync triggers."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Request

from callsifter.errors import ValidationError
from callsifter.storage.models import CallWindow
from callsifter.web.deps import get_settings, open_services

log = logging.getLogger(__name__)

router = APIRouter()


def _positive_int(payload: dict, key: str, default: int) -> int:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{key} must be a positive integer")
    return value


@router.post("/{platform}/sync")
def trigger_sync(request: Request, platform: str, payload: dict | None = Body(None)):
    """Run a bulk sync over the last ``daysBack`` days and return its summary."""
    settings = get_settings(request)
    payload = payload or {}
    days = _positive_int(payload, "daysBack", settings.sync_days)
    limit = _positive_int(payload, "limit", settings.sync_limit)

    log.info("Admin sync requested for %s: %d days, limit %d", platform, days, limit)
    with open_services(request) as services:
        summary = services.engine.bulk_sync(platform, CallWindow.last_days(days), limit)
    return summary.to_dict()


@router.post("/{platform}/calls/{call_id}/sync")
def trigger_call_sync(request: Request, platform: str, call_id: str):
    """Fetch one call now, bypassing the queue."""
    with open_services(request) as services:
        result = services.engine.sync_call(platform, call_id, source="manual")
    return result.to_dict()
