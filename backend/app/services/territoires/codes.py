from __future__ import annotations

import re

import structlog

from app.services.territoires.repository import TerritoireRepository
from app.services.territoires.types import (
    MatchHints,
    MatchSource,
    MatchSuccess,
    TerritoireKind,
    TerritoireRecord,
    kinds_for_type,
)

log = structlog.get_logger()

SIREN_RE = re.compile(r"^\d{9}$")
# INSEE commune: 5 dígitos, o Córcega 2A/2B + 3 dígitos
COMMUNE_RE = re.compile(r"^(\d{5}|2[AB]\d{3})$")
# Región (2 dígitos) o departamento (2-3 dígitos, 2A/2B)
SHORT_CODE_RE = re.compile(r"^(\d{2,3}|2[AB])$")
REGION_RE = re.compile(r"^\d{2}$")


def compact_code(query: str) -> str:
    """'200 046 977' -> '200046977'; '2a004' -> '2A004'. Otras cadenas quedan igual."""
    q = query.strip()
    squeezed = re.sub(r"[\s.]", "", q)
    if squeezed.isdigit():
        return squeezed
    return q.upper() if re.fullmatch(r"2[abAB]\d{0,3}", q) else q


def looks_like_code(query: str) -> bool:
    code = compact_code(query)
    return bool(SIREN_RE.match(code) or COMMUNE_RE.match(code) or SHORT_CODE_RE.match(code))


def find_by_code(
    repo: TerritoireRepository,
    query: str,
    hints: MatchHints | None = None,
) -> TerritoireRecord | None:
    """
    Lookup directo cuando la consulta ya tiene forma de código oficial.

    Orden: SIREN (9 dígitos) -> commune INSEE (5) -> región / departamento (2-3).
    Un hint de tipo restringe las tablas consultadas. Sin resultado -> None y
    el pipeline sigue con alias / búsqueda por nombre.
    """
    code = compact_code(query)
    kinds = kinds_for_type(hints.type if hints else None)

    if SIREN_RE.match(code):
        if TerritoireKind.GROUPEMENT in kinds:
            hit = repo.get_by_code(TerritoireKind.GROUPEMENT, code)
            if hit:
                return hit
        if TerritoireKind.COMMUNE in kinds:
            return repo.get_commune_by_siren(code)
        return None

    if COMMUNE_RE.match(code):
        if TerritoireKind.COMMUNE in kinds:
            return repo.get_by_code(TerritoireKind.COMMUNE, code)
        return None

    if SHORT_CODE_RE.match(code):
        if REGION_RE.match(code) and TerritoireKind.REGION in kinds:
            hit = repo.get_by_code(TerritoireKind.REGION, code)
            if hit:
                return hit
        if TerritoireKind.DEPARTEMENT in kinds:
            return repo.get_by_code(TerritoireKind.DEPARTEMENT, code)
    return None


def resolve_code(
    repo: TerritoireRepository,
    query: str,
    hints: MatchHints | None = None,
) -> MatchSuccess | None:
    if not looks_like_code(query):
        return None

    hit = find_by_code(repo, query, hints)
    if hit is None:
        log.debug("code_shape_miss", query=query)
        return None

    return MatchSuccess(
        code=hit.code,
        confidence=1.0,
        nom=hit.nom,
        type=hit.type,
        departement=hit.departement,
        region=hit.region,
        match_source=MatchSource.DIRECT,
    )
