from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import api_base_url, get_dispatcher, get_orchestrator, rate_limited
from app.services.batch.orchestrator import BatchOrchestrator
from app.services.batch.schemas import BatchSubmitRequest
from app.workers.jobs import BatchDispatcher

router = APIRouter()


@router.post("/batch", status_code=202, dependencies=[Depends(rate_limited)])
def submit_batch(
    data: BatchSubmitRequest,
    request: Request,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    dispatcher: BatchDispatcher = Depends(get_dispatcher),
):
    """Crea el job y responde de inmediato; el procesamiento corre en background."""
    resp = orchestrator.submit(
        data.items,
        client_id=data.client_id,
        webhook_url=data.webhook_url,
        base_url=api_base_url(request),
    )
    dispatcher.dispatch(resp.request_id)
    return resp.model_dump(mode="json", by_alias=True)


@router.get("/batch/{request_id}")
def batch_status(request_id: UUID, orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_status(str(request_id)).model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/batch/{request_id}/results")
def batch_results(request_id: UUID, orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    resp = orchestrator.get_results(str(request_id))
    body = resp.model_dump(mode="json", by_alias=True, exclude_none=True)
    if resp.retry_after:
        # todavía en curso: no es un error, se invita a reintentar
        return JSONResponse(status_code=202, content=body, headers={"Retry-After": str(resp.retry_after)})
    return body
