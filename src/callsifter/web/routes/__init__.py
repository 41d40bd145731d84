"""Route registration for the CallSifter service."""

from __future__ import annotations

from fastapi import FastAPI


def register_routes(app: FastAPI):
    """Include all route modules."""
    from callsifter.web.routes import accounts, status, sync, transcripts, webhooks

    app.include_router(status.router)
    app.include_router(webhooks.router, prefix="/webhooks")
    app.include_router(sync.router, prefix="/api")
    app.include_router(transcripts.router, prefix="/api/transcripts")
    app.include_router(accounts.router, prefix="/api/accounts")
