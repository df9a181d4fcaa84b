# app/main.py
from __future__ import annotations

from pathlib import Path

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.api.deps import API_PREFIX
from app.api.routes_batch import router as batch_router
from app.api.routes_match import router as match_router
from app.core.config import Settings, settings as default_settings
from app.core.errors import register_exception_handlers
from app.core.logging import configure_logging
from app.db.session import SessionLocal, engine as default_engine
from app.services.batch.orchestrator import BatchOrchestrator
from app.services.cache import Cache, build_cache
from app.services.rate_limit import FixedWindowRateLimiter
from app.workers.jobs import BatchDispatcher, prepare_database, shutdown_scheduler, start_scheduler

BACKEND_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=BACKEND_ROOT / ".env", override=False)

log = structlog.get_logger()

VERSION = "1.0.0"


def create_app(
    settings: Settings | None = None,
    engine: Engine | None = None,
    session_factory: sessionmaker[Session] | None = None,
    cache: Cache | None = None,
    start_background: bool = True,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.log_level)

    engine = engine or default_engine
    session_factory = session_factory or SessionLocal

    cache = cache if cache is not None else build_cache(settings)
    orchestrator = BatchOrchestrator.from_settings(session_factory, settings, cache=cache)

    app = FastAPI(title="API Territoires - résolution de territoires", version=VERSION)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.cache = cache
    app.state.orchestrator = orchestrator
    app.state.dispatcher = BatchDispatcher(orchestrator)
    app.state.rate_limiter = FixedWindowRateLimiter(
        settings.rate_limit_requests, settings.rate_limit_window_seconds
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(match_router, prefix=API_PREFIX, tags=["territoires"])
    app.include_router(batch_router, prefix=API_PREFIX, tags=["batch"])

    @app.on_event("startup")
    def on_startup():
        if not start_background:
            return
        # No dejamos caer el backend por temas de DB/scheduler
        try:
            if prepare_database(engine, session_factory):
                start_scheduler(orchestrator, engine)
        except Exception:
            log.exception("scheduler_start_failed")

    @app.on_event("shutdown")
    def on_shutdown():
        if start_background:
            shutdown_scheduler()

    @app.get("/health")
    def health_check():
        return {"status": "ok", "version": VERSION}

    return app


app = create_app()
