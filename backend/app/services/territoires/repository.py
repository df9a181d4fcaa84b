from __future__ import annotations

from enum import Enum
from typing import Protocol

from sqlalchemy import ColumnElement, String, func, or_, select
from sqlalchemy.orm import Session

from app.db.models import Alias, Commune, Departement, Groupement, Region
from app.services.territoires.types import (
    AliasRecord,
    MatchHints,
    TerritoireKind,
    TerritoireRecord,
    TerritoireType,
)


class NameTier(str, Enum):
    """Niveles de búsqueda por nombre, de más a menos estricto."""

    EXACT = "exact"
    PREFIX = "prefix"
    CONTAINS = "contains"


NAME_TIERS: tuple[NameTier, ...] = (NameTier.EXACT, NameTier.PREFIX, NameTier.CONTAINS)


class TerritoireRepository(Protocol):
    """Puerto de almacenamiento que consume el motor de resolución."""

    def get_by_code(self, kind: TerritoireKind, code: str) -> TerritoireRecord | None: ...

    def get_commune_by_siren(self, siren: str) -> TerritoireRecord | None: ...

    def search_names(
        self,
        kind: TerritoireKind,
        tier: NameTier,
        query_norm: str,
        hints: MatchHints | None = None,
        limit: int = 20,
    ) -> list[TerritoireRecord]: ...

    def get_alias_by_text(self, alias: str) -> AliasRecord | None: ...

    def get_alias_by_norm(self, alias_norm: str) -> AliasRecord | None: ...

    def find_alias_conflict(self, alias: str, alias_norm: str) -> AliasRecord | None: ...

    def add_alias(
        self,
        alias: str,
        alias_norm: str,
        code_officiel: str,
        type: str,
        source: str | None,
        comment: str | None = None,
    ) -> AliasRecord: ...

    def list_aliases(self, code_officiel: str) -> list[str]: ...

    def rollback(self) -> None: ...


MODELS = {
    TerritoireKind.REGION: Region,
    TerritoireKind.DEPARTEMENT: Departement,
    TerritoireKind.COMMUNE: Commune,
    TerritoireKind.GROUPEMENT: Groupement,
}


def _to_record(kind: TerritoireKind, row) -> TerritoireRecord:
    if kind == TerritoireKind.REGION:
        return TerritoireRecord(code=row.code, nom=row.nom, type="region", region=row.code)
    if kind == TerritoireKind.DEPARTEMENT:
        return TerritoireRecord(
            code=row.code, nom=row.nom, type="departement",
            departement=row.code, region=row.code_region,
        )
    if kind == TerritoireKind.COMMUNE:
        return TerritoireRecord(
            code=row.code, nom=row.nom, type="commune",
            departement=row.code_departement, region=row.code_region,
        )
    return TerritoireRecord(
        code=row.siren, nom=row.nom, type=row.type.lower(),
        departement=row.code_departement, region=row.code_region,
    )


def _to_alias(row: Alias) -> AliasRecord:
    return AliasRecord(
        alias=row.alias,
        alias_norm=row.alias_norm,
        code_officiel=row.code_officiel,
        type=row.type,
        source=row.source,
    )


def _hint_filters(kind: TerritoireKind, hints: MatchHints | None) -> list[ColumnElement[bool]]:
    """Los hints filtran el conjunto de candidatos ANTES de rankear."""
    if hints is None:
        return []

    filters: list[ColumnElement[bool]] = []
    if kind == TerritoireKind.REGION:
        if hints.region:
            filters.append(Region.code == hints.region)
        if hints.departement:
            parent = select(Departement.code_region).where(Departement.code == hints.departement)
            filters.append(Region.code == parent.scalar_subquery())
    elif kind == TerritoireKind.DEPARTEMENT:
        if hints.departement:
            filters.append(Departement.code == hints.departement)
        if hints.region:
            filters.append(Departement.code_region == hints.region)
    elif kind == TerritoireKind.COMMUNE:
        if hints.departement:
            filters.append(Commune.code_departement == hints.departement)
        if hints.region:
            filters.append(Commune.code_region == hints.region)
    else:
        if hints.departement:
            filters.append(Groupement.code_departement == hints.departement)
        if hints.region:
            filters.append(Groupement.code_region == hints.region)
        if hints.type and hints.type not in (
            TerritoireType.REGION, TerritoireType.DEPARTEMENT, TerritoireType.COMMUNE,
        ):
            # "epci" o "syndicat" cubren toda la familia (epci_cc, syndicat_mixte, ...)
            filters.append(func.lower(Groupement.type, type_=String).startswith(hints.type.value, autoescape=True))
    return filters


class SqlTerritoireRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, kind: TerritoireKind, code: str) -> TerritoireRecord | None:
        row = self.db.get(MODELS[kind], code)
        return _to_record(kind, row) if row else None

    def get_commune_by_siren(self, siren: str) -> TerritoireRecord | None:
        commune = self.db.execute(
            select(Commune).where(Commune.siren == siren).limit(1)
        ).scalar_one_or_none()
        return _to_record(TerritoireKind.COMMUNE, commune) if commune else None

    def search_names(
        self,
        kind: TerritoireKind,
        tier: NameTier,
        query_norm: str,
        hints: MatchHints | None = None,
        limit: int = 20,
    ) -> list[TerritoireRecord]:
        if not query_norm:
            return []

        model = MODELS[kind]
        if tier == NameTier.EXACT:
            cond = model.nom_norm == query_norm
        elif tier == NameTier.PREFIX:
            cond = model.nom_norm.startswith(query_norm, autoescape=True)
        else:
            cond = model.nom_norm.contains(query_norm, autoescape=True)

        stmt = (
            select(model)
            .where(cond, *_hint_filters(kind, hints))
            .order_by(func.length(model.nom_norm), model.nom_norm)
            .limit(limit)
        )
        rows = self.db.execute(stmt).scalars().all()
        return [_to_record(kind, r) for r in rows]

    def get_alias_by_text(self, alias: str) -> AliasRecord | None:
        row = self.db.execute(
            select(Alias).where(Alias.alias == alias).order_by(Alias.id).limit(1)
        ).scalar_one_or_none()
        return _to_alias(row) if row else None

    def get_alias_by_norm(self, alias_norm: str) -> AliasRecord | None:
        row = self.db.execute(
            select(Alias).where(Alias.alias_norm == alias_norm)
        ).scalar_one_or_none()
        return _to_alias(row) if row else None

    def find_alias_conflict(self, alias: str, alias_norm: str) -> AliasRecord | None:
        row = self.db.execute(
            select(Alias)
            .where(or_(Alias.alias == alias, Alias.alias_norm == alias_norm))
            .order_by(Alias.id)
            .limit(1)
        ).scalar_one_or_none()
        return _to_alias(row) if row else None

    def add_alias(
        self,
        alias: str,
        alias_norm: str,
        code_officiel: str,
        type: str,
        source: str | None,
        comment: str | None = None,
    ) -> AliasRecord:
        row = Alias(
            alias=alias,
            alias_norm=alias_norm,
            code_officiel=code_officiel,
            type=type,
            source=source,
            comment=comment,
        )
        self.db.add(row)
        self.db.commit()
        return _to_alias(row)

    def list_aliases(self, code_officiel: str) -> list[str]:
        rows = self.db.execute(
            select(Alias.alias).where(Alias.code_officiel == code_officiel).order_by(Alias.alias)
        ).scalars().all()
        return list(rows)

    def rollback(self) -> None:
        self.db.rollback()
