from __future__ import annotations

import structlog
from pydantic import ValidationError

from app.services.cache import Cache
from app.services.territoires.alias import resolve_alias
from app.services.territoires.codes import resolve_code
from app.services.territoires.normalize import normalize_nom
from app.services.territoires.repository import NAME_TIERS, TerritoireRepository
from app.services.territoires.scoring import (
    CANDIDATE_LIMIT,
    ScoredCandidate,
    classify,
    rank,
    score_candidate,
)
from app.services.territoires.types import (
    MatchFailed,
    MatchHints,
    MatchResult,
    kinds_for_type,
    match_result_adapter,
)

log = structlog.get_logger()

DEFAULT_CACHE_TTL = 60 * 60 * 24


class TerritoireMatcher:
    """
    Resuelve una consulta libre a un territorio oficial.

    Pipeline (se corta en el primer acierto seguro):
        código oficial -> alias curado -> búsqueda por nombre (exacto / prefijo / contiene)
    """

    def __init__(
        self,
        repo: TerritoireRepository,
        cache: Cache | None = None,
        cache_ttl: int = DEFAULT_CACHE_TTL,
    ):
        self.repo = repo
        self.cache = cache
        self.cache_ttl = cache_ttl

    def match(self, query: str | None, hints: MatchHints | None = None) -> MatchResult:
        q = (query or "").strip()
        if not q:
            return MatchFailed(message="Query is required")
        if hints is not None and hints.is_empty():
            hints = None

        key = self._cache_key(q, hints)
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        result = self._resolve(q, hints)
        self._cache_set(key, result)
        return result

    def _resolve(self, q: str, hints: MatchHints | None) -> MatchResult:
        hit = resolve_code(self.repo, q, hints)
        if hit is not None:
            return hit

        hit = resolve_alias(self.repo, q)
        if hit is not None:
            return hit

        ranked = rank(self.candidates(q, hints))
        result = classify(q, ranked)
        log.debug("name_match", query=q, candidates=len(ranked), status=result.status)
        return result

    def candidates(self, q: str, hints: MatchHints | None = None) -> list[ScoredCandidate]:
        """Por cada tabla en alcance, el primer nivel con resultados."""
        q_norm = normalize_nom(q)
        if not q_norm:
            return []

        found: list[ScoredCandidate] = []
        for kind in kinds_for_type(hints.type if hints else None):
            for tier in NAME_TIERS:
                rows = self.repo.search_names(kind, tier, q_norm, hints, limit=CANDIDATE_LIMIT)
                if rows:
                    found.extend(score_candidate(tier, q, r, hints) for r in rows)
                    break
        return found

    def _cache_key(self, q: str, hints: MatchHints | None) -> str:
        # texto crudo: el nivel exacto distingue "Évry" de "evry"
        return "match:" + q + "|" + (hints.cache_key() if hints else "")

    def _cache_get(self, key: str) -> MatchResult | None:
        if self.cache is None:
            return None
        raw = self.cache.get(key)
        if raw is None:
            return None
        try:
            return match_result_adapter.validate_python(raw)
        except ValidationError:
            log.warning("cache_entry_invalid", key=key)
            return None

    def _cache_set(self, key: str, result: MatchResult) -> None:
        if self.cache is None:
            return
        self.cache.set(key, result.model_dump(mode="json", by_alias=True), self.cache_ttl)
