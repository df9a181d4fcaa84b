from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


class TerritoireType(str, Enum):
    REGION = "region"
    DEPARTEMENT = "departement"
    COMMUNE = "commune"
    EPCI = "epci"
    EPCI_CC = "epci_cc"
    EPCI_CA = "epci_ca"
    EPCI_CU = "epci_cu"
    EPCI_METROPOLE = "epci_metropole"
    EPCI_EPT = "epci_ept"
    SYNDICAT = "syndicat"
    SYNDICAT_MIXTE = "syndicat_mixte"
    SYNDICAT_ENERGIE = "syndicat_energie"
    PETR = "petr"
    PAYS = "pays"
    PNR = "pnr"
    CAUE = "caue"
    ALEC = "alec"
    AREC = "arec"


class TerritoireKind(str, Enum):
    """Tabla de almacenamiento donde vive un territorio."""

    REGION = "region"
    DEPARTEMENT = "departement"
    COMMUNE = "commune"
    GROUPEMENT = "groupement"


ALL_KINDS: tuple[TerritoireKind, ...] = (
    TerritoireKind.REGION,
    TerritoireKind.DEPARTEMENT,
    TerritoireKind.COMMUNE,
    TerritoireKind.GROUPEMENT,
)


def kinds_for_type(type_hint: TerritoireType | None) -> tuple[TerritoireKind, ...]:
    """Con hint de tipo solo se busca en la tabla correspondiente."""
    if type_hint is None:
        return ALL_KINDS
    if type_hint in (TerritoireType.REGION, TerritoireType.DEPARTEMENT, TerritoireType.COMMUNE):
        return (TerritoireKind(type_hint.value),)
    return (TerritoireKind.GROUPEMENT,)


class MatchSource(str, Enum):
    DIRECT = "direct"
    ALIAS = "alias"
    DATABASE = "database"


@dataclass(frozen=True)
class TerritoireRecord:
    code: str
    nom: str
    type: str
    departement: str | None = None
    region: str | None = None


@dataclass(frozen=True)
class AliasRecord:
    alias: str
    alias_norm: str
    code_officiel: str
    type: str
    source: str | None = None


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


_DEPARTEMENT_RE = re.compile(r"^(\d{2,3}|2[AB])$")
_REGION_RE = re.compile(r"^\d{2,3}$")


class MatchHints(CamelModel):
    """Contexto opcional para acotar la búsqueda. Un campo por tipo de hint."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    type: TerritoireType | None = None
    departement: str | None = None
    region: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _clean_type(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("departement")
    @classmethod
    def _check_departement(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().upper()
        if not v:
            return None
        if not _DEPARTEMENT_RE.match(v):
            raise ValueError("departement must be a department code (e.g. '69', '2A', '974')")
        return v

    @field_validator("region")
    @classmethod
    def _check_region(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if not _REGION_RE.match(v):
            raise ValueError("region must be a region code (e.g. '84')")
        return v

    def is_empty(self) -> bool:
        return self.type is None and self.departement is None and self.region is None

    def cache_key(self) -> str:
        return "|".join([
            self.type.value if self.type else "",
            self.departement or "",
            self.region or "",
        ])


class MatchAlternative(CamelModel):
    code: str
    nom: str
    type: str
    confidence: float
    departement: str | None = None
    region: str | None = None


class MatchSuccess(CamelModel):
    status: Literal["matched"] = "matched"
    code: str
    confidence: float
    nom: str
    type: str
    departement: str | None = None
    region: str | None = None
    match_source: MatchSource


class MatchSuggestions(CamelModel):
    status: Literal["suggestions"] = "suggestions"
    alternatives: list[MatchAlternative]


class MatchFailed(CamelModel):
    status: Literal["failed"] = "failed"
    message: str


MatchResult = Annotated[
    Union[MatchSuccess, MatchSuggestions, MatchFailed],
    Field(discriminator="status"),
]

match_result_adapter: TypeAdapter[MatchResult] = TypeAdapter(MatchResult)
