"""Health and status routes."""

from __future__ import annotations

from fastapi import APIRouter, Request

from callsifter.web.deps import open_services

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/api/status")
def status(request: Request):
    """Stored transcript, account and queue counts."""
    with open_services(request) as services:
        summary = services.repo.get_summary()
    summary["platforms"] = request.app.state.registry.supported_platforms()
    return summary
