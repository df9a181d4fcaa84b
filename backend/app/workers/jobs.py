# app/workers/jobs.py
from __future__ import annotations

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.data.france_territories import ALIASES, COMMUNES, DEPARTEMENTS, GROUPEMENTS, REGIONS
from app.db.models import Alias, Commune, Departement, Groupement, Region
from app.db.session import Base
from app.services.batch.orchestrator import BatchOrchestrator
from app.services.territoires.normalize import normalize_nom

log = structlog.get_logger()

scheduler = BackgroundScheduler(timezone="UTC")


def db_is_ready(engine: Engine) -> bool:
    """
    Verifica rápidamente si la DB está accesible.
    Si no lo está, devolvemos False y evitamos crashear el startup.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        log.warning("db_not_ready", error=str(e))
        return False


def seed_demo(db: Session) -> None:
    """Carga la muestra de territorios si las tablas están vacías."""
    if db.execute(select(Region.code).limit(1)).first() is None:
        db.add_all(Region(**r) for r in REGIONS)
        db.flush()
        db.add_all(Departement(**d) for d in DEPARTEMENTS)
        db.flush()
        db.add_all(Commune(**c) for c in COMMUNES)
        db.add_all(Groupement(**g) for g in GROUPEMENTS)
        db.commit()
        log.info(
            "seeded_territoires",
            regions=len(REGIONS),
            departements=len(DEPARTEMENTS),
            communes=len(COMMUNES),
            groupements=len(GROUPEMENTS),
        )

    if db.execute(select(Alias.id).limit(1)).first() is None:
        db.add_all(Alias(alias_norm=normalize_nom(a["alias"]), **a) for a in ALIASES)
        db.commit()
        log.info("seeded_aliases", aliases=len(ALIASES))


def job_process_batches(orchestrator: BatchOrchestrator) -> None:
    done = orchestrator.process_pending()
    if done:
        log.info("batch_sweep", processed_jobs=done)


def job_cleanup(orchestrator: BatchOrchestrator) -> None:
    orchestrator.cleanup_expired()


class BatchDispatcher:
    """
    Lanza un job recién creado sin bloquear la respuesta HTTP.
    Sin scheduler activo el job queda pending hasta el próximo barrido.
    """

    def __init__(self, orchestrator: BatchOrchestrator, sched: BackgroundScheduler | None = None):
        self.orchestrator = orchestrator
        self.scheduler = sched or scheduler

    def dispatch(self, request_id: str) -> bool:
        if not self.scheduler.running:
            if settings.disable_scheduler:
                # nadie barre los pending: hay que llamar process_pending por fuera
                log.warning("batch_left_pending", request_id=request_id, reason="scheduler_disabled")
            else:
                log.info("batch_dispatch_deferred", request_id=request_id)
            return False
        self.scheduler.add_job(
            self.orchestrator.process,
            args=[request_id],
            id=f"batch:{request_id}",
            replace_existing=True,
            misfire_grace_time=None,
        )
        return True


def prepare_database(engine: Engine, session_factory: sessionmaker[Session]) -> bool:
    """Crea las tablas y, con SEED_DEMO=true, carga la muestra. False si la DB no responde."""
    if not db_is_ready(engine):
        return False

    Base.metadata.create_all(bind=engine)

    if settings.seed_demo:
        db = session_factory()
        try:
            seed_demo(db)
        except OperationalError as e:
            log.warning("seed_demo_failed", error=str(e))
        finally:
            db.close()
    return True


def start_scheduler(orchestrator: BatchOrchestrator, engine: Engine) -> bool:
    """
    Inicia scheduler SOLO si:
    - no está deshabilitado por env (DISABLE_SCHEDULER=true)
    - la DB responde (SELECT 1)
    """
    if settings.disable_scheduler:
        log.info("scheduler_disabled")
        return False

    if scheduler.running:
        return True

    if not db_is_ready(engine):
        log.warning("scheduler_not_started", reason="db_not_ready")
        return False

    scheduler.add_job(
        job_process_batches, args=[orchestrator],
        trigger=IntervalTrigger(seconds=settings.batch_poll_seconds),
        id="batch_sweep", replace_existing=True, max_instances=1, coalesce=True,
    )
    scheduler.add_job(
        job_cleanup, args=[orchestrator],
        trigger=IntervalTrigger(minutes=settings.batch_cleanup_minutes),
        id="batch_cleanup", replace_existing=True, coalesce=True,
    )

    scheduler.start()
    log.info("scheduler_started")
    return True


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        log.info("scheduler_stopped")
