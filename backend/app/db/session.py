# app/db/session.py
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from app.core.config import settings

# Base para modelos SQLAlchemy (app.db.models lo importa desde aquí)
Base = declarative_base()

DATABASE_URL = settings.database_url


def build_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # Necesario para SQLite cuando se usa en FastAPI / threads
        connect_args = {"check_same_thread": False}
    return create_engine(url, future=True, connect_args=connect_args)


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
        future=True,
    )


engine = build_engine(DATABASE_URL)

SessionLocal = build_session_factory(engine)

