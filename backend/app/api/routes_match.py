from fastapi import APIRouter, Depends, Request
from pydantic import Field
from sqlalchemy.orm import Session

from app.api.deps import build_matcher, get_db, rate_limited
from app.services.territoires.alias import DEFAULT_SOURCE, create_alias
from app.services.territoires.repository import SqlTerritoireRepository
from app.services.territoires.types import CamelModel, MatchHints

router = APIRouter()


class MatchRequest(CamelModel):
    query: str | None = Field(default=None, max_length=500)
    hints: MatchHints | None = None


class AliasSuggestRequest(CamelModel):
    alias: str = Field(max_length=200)
    code_officiel: str = Field(max_length=20)
    type: str | None = Field(default=None, max_length=40)
    source: str | None = Field(default=DEFAULT_SOURCE, max_length=50)
    comment: str | None = Field(default=None, max_length=1000)


@router.post("/match", dependencies=[Depends(rate_limited)])
def match_territoire(data: MatchRequest, request: Request, db: Session = Depends(get_db)):
    """Resuelve una consulta libre: matched, suggestions o failed (siempre 200)."""
    result = build_matcher(request, db).match(data.query, data.hints)
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/alias/suggest", status_code=201)
def suggest_alias(data: AliasSuggestRequest, request: Request, db: Session = Depends(get_db)):
    created, target = create_alias(
        SqlTerritoireRepository(db),
        alias=data.alias,
        code_officiel=data.code_officiel,
        type=data.type,
        source=data.source or DEFAULT_SOURCE,
        comment=data.comment,
        cache=request.app.state.cache,
    )
    return {
        "status": "created",
        "alias": created.alias,
        "targetTerritoire": {
            "code": target.code,
            "nom": target.nom,
            "type": target.type,
        },
    }


@router.get("/alias/{code}")
def list_aliases(code: str, db: Session = Depends(get_db)):
    return {"code": code, "aliases": SqlTerritoireRepository(db).list_aliases(code)}
