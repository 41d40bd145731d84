"""Account routes."""

from __future__ import annotations

from fastapi import APIRouter, Request

from callsifter.errors import NotFoundError
from callsifter.search.filters import TranscriptFilters
from callsifter.web.deps import open_services

router = APIRouter()


@router.get("")
def list_accounts(request: Request):
    with open_services(request) as services:
        return {"accounts": services.repo.list_accounts()}


@router.get("/{account_id}")
def account_detail(request: Request, account_id: int, limit: int = 50, offset: int = 0):
    """One account with its most recent transcripts."""
    with open_services(request) as services:
        account = services.repo.get_account_by_id(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        transcripts = services.repo.search_transcripts(
            TranscriptFilters(account_ids=[account_id], limit=limit, offset=offset)
        )
    return {
        "id": account.id,
        "name": account.name,
        "domain": account.domain,
        "metadata": account.metadata,
        "created_at": account.created_at,
        **transcripts,
    }
