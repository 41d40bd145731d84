"""FastAPI application factory for the CallSifter service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from callsifter.config import Settings, load_settings
from callsifter.errors import (
    AuthConfigError,
    CallSifterError,
    NotFoundError,
    PlatformAPIError,
    SignatureError,
    TransientError,
    ValidationError,
)
from callsifter.platforms.registry import AdapterRegistry

log = logging.getLogger(__name__)

ERROR_STATUS = [
    (AuthConfigError, 401),
    (SignatureError, 401),
    (NotFoundError, 404),
    (ValidationError, 400),
    (TransientError, 503),
    (PlatformAPIError, 502),
]


def status_for(exc: Exception) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


def _error_body(exc: Exception) -> dict:
    return {"error": str(exc), "type": type(exc).__name__}


def create_app(
    settings: Settings | None = None,
    registry: AdapterRegistry | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or load_settings()
    app = FastAPI(title="CallSifter", docs_url=None, redoc_url=None)
    app.state.settings = settings
    app.state.registry = registry or AdapterRegistry(settings)

    @app.exception_handler(CallSifterError)
    async def handle_callsifter_error(request: Request, exc: CallSifterError):
        status = status_for(exc)
        if status >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(_error_body(exc), status_code=status)

    from callsifter.web.routes import register_routes

    register_routes(app)

    return app
