"""Vendor webhook intake."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Request

from callsifter.sync.webhooks import WebhookIntake
from callsifter.web.deps import get_settings, open_services

router = APIRouter()


def _enqueue(request: Request, platform: str, body: bytes, signature: str | None) -> dict:
    settings = get_settings(request)
    secrets = {"gong": settings.gong_webhook_secret} if settings.gong_webhook_secret else {}
    with open_services(request) as services:
        intake = WebhookIntake(services.queue, secrets=secrets)
        return intake.handle(platform, body, signature)


@router.post("/{platform}")
async def receive_webhook(request: Request, platform: str):
    """Validate a vendor notification and queue the call for sync."""
    body = await request.body()
    signature = request.headers.get(f"x-{platform}-signature")
    # SQLite work runs off the event loop
    return await asyncio.to_thread(_enqueue, request, platform.lower(), body, signature)
