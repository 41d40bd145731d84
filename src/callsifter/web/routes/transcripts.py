"""Transcript browsing and account review routes."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Body, Query, Request

from callsifter.errors import NotFoundError, ValidationError
from callsifter.search.filters import TranscriptFilters
from callsifter.web.deps import open_services

router = APIRouter()


@router.get("")
def list_transcripts(
    request: Request,
    q: str = Query(""),
    account_id: list[int] = Query([]),
    platform: list[str] = Query([]),
    date_from: str = Query(""),
    date_to: str = Query(""),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Filter transcripts; ``q`` is matched against title and text."""
    filters = TranscriptFilters(
        account_ids=account_id,
        platforms=[p.lower() for p in platform],
        date_from=date_from or None,
        date_to=date_to or None,
        query=q.strip() or None,
        limit=limit,
        offset=offset,
    )
    with open_services(request) as services:
        return services.repo.search_transcripts(filters)


@router.get("/{transcript_id}")
def transcript_detail(request: Request, transcript_id: int):
    with open_services(request) as services:
        transcript = services.repo.get_transcript_by_id(transcript_id)
        if transcript is None:
            raise NotFoundError(f"Transcript {transcript_id} not found")
        transcript["segments"] = services.repo.get_segments(transcript_id)
        transcript["audit"] = [
            asdict(record) for record in services.repo.get_audit_trail(transcript_id)
        ]
    return transcript


@router.post("/{transcript_id}/reassociate")
def reassociate(request: Request, transcript_id: int, payload: dict = Body(...)):
    """Move a transcript to another account, recording who and why."""
    account_id = payload.get("accountId")
    reason = (payload.get("reason") or "").strip()
    if not isinstance(account_id, int) or isinstance(account_id, bool):
        raise ValidationError("accountId must be an integer")
    if not reason:
        raise ValidationError("reason is required")

    with open_services(request) as services:
        record = services.association.reassociate_transcript(
            transcript_id, account_id, reason, payload.get("actor") or "api"
        )
    return asdict(record)


@router.get("/{transcript_id}/suggestions")
def suggestions(request: Request, transcript_id: int):
    with open_services(request) as services:
        return services.association.get_account_suggestions(transcript_id)
