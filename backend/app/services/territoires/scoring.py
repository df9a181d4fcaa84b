from __future__ import annotations

from dataclasses import dataclass

from rapidfuzz import fuzz

from app.services.territoires.normalize import normalize_nom
from app.services.territoires.repository import NameTier
from app.services.territoires.types import (
    MatchAlternative,
    MatchFailed,
    MatchHints,
    MatchResult,
    MatchSource,
    MatchSuccess,
    MatchSuggestions,
    TerritoireRecord,
)

# Confianza base por nivel de búsqueda.
# exacto (mismo texto salvo mayúsculas) > exacto normalizado > prefijo > contiene.
EXACT_RAW_CONFIDENCE = 1.0
EXACT_NORM_CONFIDENCE = 0.95
PREFIX_BASE = 0.82
PREFIX_SPAN = 0.08
CONTAINS_BASE = 0.70
CONTAINS_SPAN = 0.15

# Cada hint que el candidato cumple suma HINT_BONUS (tope 1.0).
# Un prefijo casi completo + un hint supera MATCH_THRESHOLD.
HINT_BONUS = 0.05

MATCH_THRESHOLD = 0.9
AMBIGUITY_EPSILON = 0.03
MIN_CONFIDENCE = 0.5

SUGGESTION_LIMIT = 5
CANDIDATE_LIMIT = 20


@dataclass(frozen=True)
class ScoredCandidate:
    record: TerritoireRecord
    confidence: float
    nom_norm: str

    def sort_key(self) -> tuple:
        # confianza desc, nombre más corto, orden léxico, código
        return (-self.confidence, len(self.record.nom), self.nom_norm, self.record.nom, self.record.code)


def similarity(a: str, b: str) -> float:
    """Similitud 0..1 entre dos cadenas ya normalizadas."""
    if not a or not b:
        return 0.0
    return fuzz.ratio(a, b) / 100.0


def tier_confidence(tier: NameTier, query: str, record: TerritoireRecord) -> float:
    q_norm = normalize_nom(query)
    nom_norm = normalize_nom(record.nom)

    if tier == NameTier.EXACT:
        if query.strip().casefold() == record.nom.casefold():
            return EXACT_RAW_CONFIDENCE
        return EXACT_NORM_CONFIDENCE

    ratio = similarity(q_norm, nom_norm)
    if tier == NameTier.PREFIX:
        return PREFIX_BASE + PREFIX_SPAN * ratio
    return CONTAINS_BASE + CONTAINS_SPAN * ratio


def hint_bonus(record: TerritoireRecord, hints: MatchHints | None) -> float:
    if hints is None:
        return 0.0
    honored = 0
    if hints.type and record.type.startswith(hints.type.value):
        honored += 1
    if hints.departement and record.departement == hints.departement:
        honored += 1
    if hints.region and record.region == hints.region:
        honored += 1
    return HINT_BONUS * honored


def score_candidate(
    tier: NameTier,
    query: str,
    record: TerritoireRecord,
    hints: MatchHints | None = None,
) -> ScoredCandidate:
    raw = tier_confidence(tier, query, record) + hint_bonus(record, hints)
    confidence = round(min(raw, 1.0), 4)
    return ScoredCandidate(record=record, confidence=confidence, nom_norm=normalize_nom(record.nom))


def rank(candidates: list[ScoredCandidate]) -> list[ScoredCandidate]:
    """
    Orden estable y determinista. Un mismo territorio encontrado por dos
    caminos se queda con su mejor puntaje.
    """
    best: dict[tuple[str, str], ScoredCandidate] = {}
    for cand in candidates:
        key = (cand.record.type, cand.record.code)
        prev = best.get(key)
        if prev is None or cand.confidence > prev.confidence:
            best[key] = cand
    return sorted(best.values(), key=ScoredCandidate.sort_key)


def _alternative(cand: ScoredCandidate) -> MatchAlternative:
    r = cand.record
    return MatchAlternative(
        code=r.code,
        nom=r.nom,
        type=r.type,
        confidence=cand.confidence,
        departement=r.departement,
        region=r.region,
    )


def classify(query: str, ranked: list[ScoredCandidate]) -> MatchResult:
    """
    matched     -> el primero supera MATCH_THRESHOLD y nadie queda a menos de
                   AMBIGUITY_EPSILON de él
    suggestions -> ambiguo, o candidatos bajo el umbral pero sobre el piso
    failed      -> ningún candidato alcanza MIN_CONFIDENCE
    """
    viable = [c for c in ranked if c.confidence >= MIN_CONFIDENCE]
    if not viable:
        return MatchFailed(message=f'No territoire found matching "{query.strip()}"')

    top = viable[0]
    contenders = [c for c in viable[1:] if top.confidence - c.confidence < AMBIGUITY_EPSILON]
    if top.confidence >= MATCH_THRESHOLD and not contenders:
        r = top.record
        return MatchSuccess(
            code=r.code,
            confidence=top.confidence,
            nom=r.nom,
            type=r.type,
            departement=r.departement,
            region=r.region,
            match_source=MatchSource.DATABASE,
        )

    return MatchSuggestions(alternatives=[_alternative(c) for c in viable[:SUGGESTION_LIMIT]])
