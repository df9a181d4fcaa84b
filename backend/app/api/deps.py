from __future__ import annotations

from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.errors import LimitExceededError
from app.services.batch.orchestrator import BatchOrchestrator
from app.services.territoires.matching import TerritoireMatcher
from app.services.territoires.repository import SqlTerritoireRepository
from app.workers.jobs import BatchDispatcher

API_PREFIX = "/api/v1/territoires"


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency para FastAPI.
    Uso típico:
        def endpoint(db: Session = Depends(get_db)):
            ...
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def build_matcher(request: Request, db: Session) -> TerritoireMatcher:
    state = request.app.state
    return TerritoireMatcher(
        SqlTerritoireRepository(db),
        cache=state.cache,
        cache_ttl=state.settings.cache_ttl_seconds,
    )


def get_orchestrator(request: Request) -> BatchOrchestrator:
    return request.app.state.orchestrator


def get_dispatcher(request: Request) -> BatchDispatcher:
    return request.app.state.dispatcher


def client_key(request: Request) -> str:
    client_id = request.headers.get("X-Client-Id")
    if client_id:
        return client_id
    return request.client.host if request.client else "anonymous"


def rate_limited(request: Request) -> None:
    gate = request.app.state.rate_limiter
    key = client_key(request)
    if not gate.allow(key):
        raise LimitExceededError("Rate limit exceeded", retry_after=gate.retry_after(key))


def api_base_url(request: Request) -> str:
    base = request.app.state.settings.public_base_url or str(request.base_url)
    return base.rstrip("/") + API_PREFIX
