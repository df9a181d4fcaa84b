from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Enum as SAEnum, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.session import Base
from app.services.territoires.normalize import normalize_nom
from app.services.batch.status import BatchStatus, ItemStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_request_id() -> str:
    return str(uuid.uuid4())


def _enum_column(enum_cls):
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda e: [m.value for m in e],
    )


class NamedTerritoire:
    """nom_norm se recalcula cada vez que se asigna nom (lookup por nombre normalizado)."""

    nom: Mapped[str] = mapped_column(String(255), nullable=False)
    nom_norm: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    @validates("nom")
    def _sync_nom_norm(self, key, value):
        self.nom_norm = normalize_nom(value)
        return value


class Region(NamedTerritoire, Base):
    __tablename__ = "regions"
    code: Mapped[str] = mapped_column(String(3), primary_key=True)


class Departement(NamedTerritoire, Base):
    __tablename__ = "departements"
    code: Mapped[str] = mapped_column(String(3), primary_key=True)
    code_region: Mapped[str] = mapped_column(ForeignKey("regions.code"), index=True)


class Commune(NamedTerritoire, Base):
    __tablename__ = "communes"
    code: Mapped[str] = mapped_column(String(5), primary_key=True)  # INSEE
    siren: Mapped[str | None] = mapped_column(String(9), nullable=True, index=True)
    code_departement: Mapped[str] = mapped_column(ForeignKey("departements.code"), index=True)
    code_region: Mapped[str] = mapped_column(ForeignKey("regions.code"), index=True)


class Groupement(NamedTerritoire, Base):
    __tablename__ = "groupements"
    siren: Mapped[str] = mapped_column(String(9), primary_key=True)
    type: Mapped[str] = mapped_column(String(40), index=True)  # epci_cc|syndicat|pnr|caue|...
    code_departement: Mapped[str | None] = mapped_column(String(3), nullable=True, index=True)
    code_region: Mapped[str | None] = mapped_column(String(3), nullable=True, index=True)


class Alias(Base):
    __tablename__ = "aliases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    alias: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    alias_norm: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    code_officiel: Mapped[str] = mapped_column(String(9), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)  # procedencia, sin normalizar
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class BatchMatchRequest(Base):
    __tablename__ = "batch_match_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_request_id)
    client_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    webhook_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    total_items: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[BatchStatus] = mapped_column(_enum_column(BatchStatus), default=BatchStatus.PENDING, index=True)

    # processed == matched + suggestions + failed (se incrementan juntos)
    processed: Mapped[int] = mapped_column(Integer, default=0)
    matched: Mapped[int] = mapped_column(Integer, default=0)
    suggestions: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # lo renueva el worker en cada item; un job "processing" sin latido reciente se puede reclamar
    heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    items: Mapped[list["BatchMatchItem"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="BatchMatchItem.input_index",
    )


class BatchMatchItem(Base):
    __tablename__ = "batch_match_items"
    __table_args__ = (UniqueConstraint("request_id", "input_index", name="uq_batch_item_index"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[str] = mapped_column(
        ForeignKey("batch_match_requests.id", ondelete="CASCADE"), index=True
    )
    input_index: Mapped[int] = mapped_column(Integer, nullable=False)
    query: Mapped[str] = mapped_column(String(200), nullable=False)
    hints: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    status: Mapped[ItemStatus] = mapped_column(_enum_column(ItemStatus), default=ItemStatus.PENDING, index=True)

    # matched
    code: Mapped[str | None] = mapped_column(String(9), nullable=True)
    nom: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    match_source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # suggestions
    alternatives: Mapped[list | None] = mapped_column(JSON, nullable=True)
    # failed
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped["BatchMatchRequest"] = relationship(back_populates="items")
