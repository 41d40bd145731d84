"""Dependency wiring for web routes."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass

from fastapi import Request

from callsifter.association.engine import AccountAssociationEngine
from callsifter.config import Settings, load_rules
from callsifter.platforms.registry import AdapterRegistry
from callsifter.storage.database import Database
from callsifter.storage.repository import Repository
from callsifter.sync.engine import RetryPolicy, SyncEngine
from callsifter.sync.queue import MessageQueue


@dataclass
class Services:
    db: Database
    repo: Repository
    association: AccountAssociationEngine
    engine: SyncEngine
    queue: MessageQueue


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> AdapterRegistry:
    return request.app.state.registry


@contextmanager
def get_db(settings: Settings):
    """Open the database for one request, ensuring it's closed."""
    with Database(settings.db_path) as db:
        yield db


def build_services(db: Database, settings: Settings, registry: AdapterRegistry) -> Services:
    """Assemble the repository and engines around an open database."""
    repo = Repository(db)
    association = AccountAssociationEngine(
        repo, rules=load_rules(), excluded_domains=settings.excluded_domains
    )
    engine = SyncEngine(
        registry,
        repo,
        association,
        retry=RetryPolicy(max_attempts=settings.max_attempts, base_delay=settings.backoff_seconds),
    )
    queue = MessageQueue(
        db,
        max_receives=settings.queue_max_receives,
        visibility_timeout=settings.queue_visibility_timeout,
    )
    return Services(db=db, repo=repo, association=association, engine=engine, queue=queue)


@contextmanager
def open_services(request: Request):
    settings = get_settings(request)
    with get_db(settings) as db:
        yield build_services(db, settings, get_registry(request))
