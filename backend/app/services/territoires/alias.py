from __future__ import annotations

import structlog
from sqlalchemy.exc import IntegrityError

from app.core.errors import ConflictError, InvalidRequestError, NotFoundError
from app.services.cache import Cache
from app.services.territoires.codes import find_by_code
from app.services.territoires.normalize import normalize_nom
from app.services.territoires.repository import TerritoireRepository
from app.services.territoires.types import (
    AliasRecord,
    MatchHints,
    MatchSource,
    MatchSuccess,
    TerritoireRecord,
    TerritoireType,
)

log = structlog.get_logger()

DEFAULT_SOURCE = "user_contribution"
SOURCE_MAX_LEN = 50
ALIAS_MAX_LEN = 200


def find_by_alias(repo: TerritoireRepository, text: str) -> AliasRecord | None:
    """Texto exacto primero, luego forma normalizada."""
    raw = (text or "").strip()
    if not raw:
        return None
    hit = repo.get_alias_by_text(raw)
    if hit:
        return hit
    norm = normalize_nom(raw)
    return repo.get_alias_by_norm(norm) if norm else None


def lookup_target(repo: TerritoireRepository, code: str, type: str | None = None) -> TerritoireRecord | None:
    hints = None
    if type:
        try:
            hints = MatchHints(type=TerritoireType(type))
        except ValueError:
            hints = None
    return find_by_code(repo, code, hints)


def resolve_alias(repo: TerritoireRepository, query: str) -> MatchSuccess | None:
    alias = find_by_alias(repo, query)
    if alias is None:
        return None

    target = lookup_target(repo, alias.code_officiel, alias.type)
    if target is None:
        # alias huérfano: se ignora y sigue la búsqueda por nombre
        log.warning("alias_target_missing", alias=alias.alias, code=alias.code_officiel)
        return None

    return MatchSuccess(
        code=target.code,
        confidence=1.0,
        nom=target.nom,
        type=target.type,
        departement=target.departement,
        region=target.region,
        match_source=MatchSource.ALIAS,
    )


def create_alias(
    repo: TerritoireRepository,
    alias: str,
    code_officiel: str,
    type: str | None = None,
    source: str | None = DEFAULT_SOURCE,
    comment: str | None = None,
    cache: Cache | None = None,
) -> tuple[AliasRecord, TerritoireRecord]:
    """
    Registra un alias curado.

    - El código destino debe existir (NOT_FOUND si no).
    - Ni el texto crudo ni su forma normalizada pueden existir ya (CONFLICT,
      con el alias previo y su destino en details).
    - `source` se guarda tal cual, sin normalizar.
    """
    text = (alias or "").strip()
    code = (code_officiel or "").strip()
    if not text:
        raise InvalidRequestError("alias is required")
    if not code:
        raise InvalidRequestError("codeOfficiel is required")
    if len(text) > ALIAS_MAX_LEN:
        raise InvalidRequestError(f"alias must be at most {ALIAS_MAX_LEN} characters")
    if source is not None and len(source) > SOURCE_MAX_LEN:
        raise InvalidRequestError(f"source must be at most {SOURCE_MAX_LEN} characters")

    alias_norm = normalize_nom(text)
    if not alias_norm:
        raise InvalidRequestError("alias must contain at least one letter or digit")

    target = lookup_target(repo, code, type)
    if target is None:
        raise NotFoundError(f"Territoire {code} not found", {"codeOfficiel": code})

    existing = repo.find_alias_conflict(text, alias_norm)
    if existing:
        raise ConflictError(
            f'Alias "{existing.alias}" already exists',
            {"existingAlias": existing.alias, "targetCode": existing.code_officiel},
        )

    try:
        created = repo.add_alias(
            alias=text,
            alias_norm=alias_norm,
            code_officiel=target.code,
            type=type or target.type,
            source=source,
            comment=comment,
        )
    except IntegrityError:
        # carrera con otra inserción del mismo alias_norm
        repo.rollback()
        existing = repo.get_alias_by_norm(alias_norm)
        raise ConflictError(
            f'Alias "{text}" already exists',
            {
                "existingAlias": existing.alias if existing else text,
                "targetCode": existing.code_officiel if existing else target.code,
            },
        )

    if cache is not None:
        cache.clear()

    log.info("alias_created", alias=created.alias, code=created.code_officiel, source=created.source)
    return created, target
