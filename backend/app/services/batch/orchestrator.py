from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from app.core.errors import InvalidRequestError, LimitExceededError, NotFoundError
from app.db.models import BatchMatchItem, BatchMatchRequest, utcnow
from app.services.batch.notify import send_webhook
from app.services.batch.schemas import (
    BatchItemIn,
    BatchItemResult,
    BatchResultsResponse,
    BatchStatusResponse,
    BatchSubmitResponse,
    BatchSummary,
)
from app.services.batch.status import BatchStatus, ItemStatus
from app.services.cache import Cache
from app.services.territoires.matching import TerritoireMatcher
from app.services.territoires.repository import SqlTerritoireRepository
from app.services.territoires.types import (
    MatchFailed,
    MatchHints,
    MatchResult,
    MatchSuccess,
    MatchSuggestions,
)

log = structlog.get_logger()

QUERY_MAX_LEN = 200
ITEM_ERROR_MESSAGE = "Resolution failed: internal error"
ABORTED_MESSAGE = "Batch processing aborted"
STILL_PROCESSING_MESSAGE = "Batch is still processing, retry later"

ACTIVE_STATUSES = (BatchStatus.PENDING, BatchStatus.PROCESSING)
COUNTER_FOR_STATUS = {
    ItemStatus.MATCHED: "matched",
    ItemStatus.SUGGESTIONS: "suggestions",
    ItemStatus.FAILED: "failed",
}


def percent(part: int, total: int) -> int:
    return 0 if total == 0 else round(part / total * 100)


@dataclass
class _Group:
    """Items con la misma consulta e hints: se resuelven una sola vez."""

    query: str
    hints: dict | None
    item_ids: list[int] = field(default_factory=list)


class BatchOrchestrator:
    """
    Ciclo de vida de un batch: pending -> processing -> completed | failed.

    El estado vive en la DB (request + items). Cualquier worker puede reclamar
    un job con un UPDATE condicional; los contadores se incrementan en SQL en
    la misma transacción que cierra cada item.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache: Cache | None = None,
        cache_ttl: int = 60 * 60 * 24,
        concurrency: int = 4,
        max_items: int = 1000,
        ttl_hours: int = 24,
        items_per_second: int = 50,
        stale_minutes: int = 15,
        max_active_per_client: int = 5,
        retry_after: int = 5,
        webhook_timeout: int = 10,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.concurrency = max(1, concurrency)
        self.max_items = max_items
        self.ttl_hours = ttl_hours
        self.items_per_second = max(1, items_per_second)
        self.stale_minutes = stale_minutes
        self.max_active_per_client = max_active_per_client
        self.retry_after = retry_after
        self.webhook_timeout = webhook_timeout

    @classmethod
    def from_settings(cls, session_factory, settings, cache: Cache | None = None) -> "BatchOrchestrator":
        return cls(
            session_factory,
            cache=cache,
            cache_ttl=settings.cache_ttl_seconds,
            concurrency=settings.batch_concurrency,
            max_items=settings.batch_max_items,
            ttl_hours=settings.batch_ttl_hours,
            items_per_second=settings.batch_items_per_second,
            stale_minutes=settings.batch_stale_minutes,
            max_active_per_client=settings.max_active_batches_per_client,
            retry_after=settings.batch_retry_after_seconds,
            webhook_timeout=settings.webhook_timeout_seconds,
        )

    # ---------- submit ----------

    def _validate_items(self, items: list[BatchItemIn] | None) -> list[tuple[str, dict | None]]:
        if items is None:
            raise InvalidRequestError("Items array is required")
        if len(items) == 0:
            raise InvalidRequestError("Items array cannot be empty")
        if len(items) > self.max_items:
            raise LimitExceededError(
                f"Maximum {self.max_items} items per batch",
                {"maxItems": self.max_items, "received": len(items)},
            )

        clean: list[tuple[str, dict | None]] = []
        for i, item in enumerate(items):
            q = (item.query or "").strip()
            if not q:
                raise InvalidRequestError(f"Item {i}: query cannot be empty", {"index": i})
            hints = None
            if item.hints is not None and not item.hints.is_empty():
                hints = item.hints.model_dump(mode="json", exclude_none=True)
            clean.append((q[:QUERY_MAX_LEN], hints))
        return clean

    def submit(
        self,
        items: list[BatchItemIn] | None,
        client_id: str | None = None,
        webhook_url: str | None = None,
        base_url: str = "",
    ) -> BatchSubmitResponse:
        clean = self._validate_items(items)

        with self.session_factory() as db:
            if client_id:
                active = db.execute(
                    select(func.count(BatchMatchRequest.id)).where(
                        BatchMatchRequest.client_id == client_id,
                        BatchMatchRequest.status.in_(ACTIVE_STATUSES),
                    )
                ).scalar_one()
                if active >= self.max_active_per_client:
                    raise LimitExceededError(
                        f"Maximum {self.max_active_per_client} active batches per client",
                        {"clientId": client_id, "active": active},
                        retry_after=self.retry_after,
                    )

            now = utcnow()
            req = BatchMatchRequest(
                client_id=client_id,
                webhook_url=webhook_url,
                total_items=len(clean),
                status=BatchStatus.PENDING,
                created_at=now,
                expires_at=now + timedelta(hours=self.ttl_hours),
            )
            req.items = [
                BatchMatchItem(input_index=i, query=q, hints=h, status=ItemStatus.PENDING)
                for i, (q, h) in enumerate(clean)
            ]
            db.add(req)
            db.commit()
            request_id = req.id

        log.info("batch_submitted", request_id=request_id, total_items=len(clean), client_id=client_id)
        base = base_url.rstrip("/")
        return BatchSubmitResponse(
            request_id=request_id,
            status=BatchStatus.PENDING,
            total_items=len(clean),
            estimated_duration=math.ceil(len(clean) / self.items_per_second),
            status_url=f"{base}/batch/{request_id}",
            results_url=f"{base}/batch/{request_id}/results",
        )

    # ---------- process ----------

    def _claimable(self, now: datetime):
        stale_before = now - timedelta(minutes=self.stale_minutes)
        return or_(
            BatchMatchRequest.status == BatchStatus.PENDING,
            and_(
                BatchMatchRequest.status == BatchStatus.PROCESSING,
                or_(BatchMatchRequest.heartbeat_at.is_(None), BatchMatchRequest.heartbeat_at < stale_before),
            ),
        )

    def claim(self, request_id: str) -> bool:
        """pending -> processing (o re-claim de un processing sin latido). Un solo ganador."""
        now = utcnow()
        with self.session_factory() as db:
            res = db.execute(
                update(BatchMatchRequest)
                .where(BatchMatchRequest.id == request_id, self._claimable(now))
                .values(
                    status=BatchStatus.PROCESSING,
                    # un re-claim conserva el inicio original
                    started_at=func.coalesce(BatchMatchRequest.started_at, now),
                    heartbeat_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return res.rowcount == 1

    def process(self, request_id: str) -> BatchStatus | None:
        """Procesa un job si se logra reclamar. Devuelve el estado final o None."""
        if not self.claim(request_id):
            return None

        log.info("batch_processing", request_id=request_id)
        try:
            self._run(request_id)
        except Exception:
            log.exception("batch_failed", request_id=request_id)
            self._abort(request_id)
            status = BatchStatus.FAILED
        else:
            status = self._finish(request_id, BatchStatus.COMPLETED)

        self._notify(request_id)
        return status

    def process_pending(self, limit: int = 10) -> int:
        """Barrido: procesa los jobs reclamables más antiguos."""
        with self.session_factory() as db:
            ids = db.execute(
                select(BatchMatchRequest.id)
                .where(self._claimable(utcnow()))
                .order_by(BatchMatchRequest.created_at)
                .limit(limit)
            ).scalars().all()

        done = 0
        for request_id in ids:
            if self.process(request_id) is not None:
                done += 1
        return done

    def _pending_groups(self, request_id: str) -> list[_Group]:
        with self.session_factory() as db:
            rows = db.execute(
                select(BatchMatchItem.id, BatchMatchItem.query, BatchMatchItem.hints)
                .where(BatchMatchItem.request_id == request_id, BatchMatchItem.status == ItemStatus.PENDING)
                .order_by(BatchMatchItem.input_index)
            ).all()

        groups: dict[tuple, _Group] = {}
        for item_id, query, hints in rows:
            key = (query, tuple(sorted((hints or {}).items())))
            group = groups.setdefault(key, _Group(query=query, hints=hints))
            group.item_ids.append(item_id)
        return list(groups.values())

    def _run(self, request_id: str) -> None:
        groups = self._pending_groups(request_id)
        if self.concurrency > 1 and len(groups) > 1:
            with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
                # list() propaga errores de infraestructura de cualquier worker
                list(pool.map(lambda g: self._resolve_group(request_id, g), groups))
        else:
            for group in groups:
                self._resolve_group(request_id, group)

    def _resolve_group(self, request_id: str, group: _Group) -> None:
        with self.session_factory() as db:
            matcher = TerritoireMatcher(SqlTerritoireRepository(db), cache=self.cache, cache_ttl=self.cache_ttl)
            result: MatchResult
            try:
                hints = MatchHints.model_validate(group.hints) if group.hints else None
                result = matcher.match(group.query, hints)
            except Exception:
                # un item que falla no corta el batch
                log.exception("batch_item_failed", request_id=request_id, query=group.query)
                db.rollback()
                result = MatchFailed(message=ITEM_ERROR_MESSAGE)

            for item_id in group.item_ids:
                self._record_outcome(db, request_id, item_id, result)

    def _record_outcome(self, db: Session, request_id: str, item_id: int, result: MatchResult) -> bool:
        """Cierra el item (solo si sigue pending) y suma contadores en la misma transacción."""
        values: dict = {"status": ItemStatus(result.status)}
        if isinstance(result, MatchSuccess):
            values.update(
                code=result.code,
                nom=result.nom,
                type=result.type,
                confidence=result.confidence,
                match_source=result.match_source.value,
            )
        elif isinstance(result, MatchSuggestions):
            values["alternatives"] = [
                a.model_dump(mode="json", by_alias=True, exclude_none=True) for a in result.alternatives
            ]
        else:
            values["error_message"] = result.message

        res = db.execute(
            update(BatchMatchItem)
            .where(BatchMatchItem.id == item_id, BatchMatchItem.status == ItemStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            return False

        counter = COUNTER_FOR_STATUS[values["status"]]
        db.execute(
            update(BatchMatchRequest)
            .where(BatchMatchRequest.id == request_id)
            .values(
                {
                    "processed": BatchMatchRequest.processed + 1,
                    counter: getattr(BatchMatchRequest, counter) + 1,
                    "heartbeat_at": utcnow(),
                }
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return True

    def _finish(self, request_id: str, status: BatchStatus) -> BatchStatus:
        with self.session_factory() as db:
            db.execute(
                update(BatchMatchRequest)
                .where(BatchMatchRequest.id == request_id, BatchMatchRequest.status == BatchStatus.PROCESSING)
                .values(status=status, completed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
        log.info("batch_finished", request_id=request_id, status=status.value)
        return status

    def _abort(self, request_id: str) -> None:
        """Error de infraestructura: lo pendiente queda failed y el job también."""
        try:
            with self.session_factory() as db:
                pending = db.execute(
                    select(BatchMatchItem.id).where(
                        BatchMatchItem.request_id == request_id,
                        BatchMatchItem.status == ItemStatus.PENDING,
                    )
                ).scalars().all()
                aborted = MatchFailed(message=ABORTED_MESSAGE)
                for item_id in pending:
                    self._record_outcome(db, request_id, item_id, aborted)
            self._finish(request_id, BatchStatus.FAILED)
        except Exception:
            # el job queda processing y se re-reclama cuando pierda el latido
            log.exception("batch_abort_failed", request_id=request_id)

    def _notify(self, request_id: str) -> None:
        with self.session_factory() as db:
            req = db.get(BatchMatchRequest, request_id)
            if req is None or not req.webhook_url:
                return
            url = req.webhook_url
            payload = {
                "requestId": req.id,
                "status": req.status.value,
                "summary": self._summary(req).model_dump(by_alias=True),
            }
        send_webhook(url, payload, timeout=self.webhook_timeout)

    # ---------- consultas ----------

    def _get(self, db: Session, request_id: str) -> BatchMatchRequest:
        req = db.get(BatchMatchRequest, request_id)
        if req is None:
            raise NotFoundError("Batch request not found", {"requestId": request_id})
        return req

    @staticmethod
    def _summary(req: BatchMatchRequest) -> BatchSummary:
        return BatchSummary(
            total=req.total_items,
            matched=req.matched,
            suggestions=req.suggestions,
            failed=req.failed,
            success_rate=percent(req.matched, req.total_items),
        )

    def get_status(self, request_id: str) -> BatchStatusResponse:
        with self.session_factory() as db:
            req = self._get(db, request_id)
            return BatchStatusResponse(
                request_id=req.id,
                status=req.status,
                total_items=req.total_items,
                processed=req.processed,
                matched=req.matched,
                suggestions=req.suggestions,
                failed=req.failed,
                progress=percent(req.processed, req.total_items),
                created_at=req.created_at,
                started_at=req.started_at,
                completed_at=req.completed_at,
            )

    def get_results(self, request_id: str) -> BatchResultsResponse:
        with self.session_factory() as db:
            req = self._get(db, request_id)
            if not req.status.is_terminal:
                return BatchResultsResponse(
                    request_id=req.id,
                    status=req.status,
                    message=STILL_PROCESSING_MESSAGE,
                    results=[],
                    summary=self._summary(req),
                    retry_after=self.retry_after,
                )

            items = db.execute(
                select(BatchMatchItem)
                .where(BatchMatchItem.request_id == request_id)
                .order_by(BatchMatchItem.input_index)
            ).scalars().all()
            results = [
                BatchItemResult(
                    index=it.input_index,
                    query=it.query,
                    status=it.status,
                    code=it.code,
                    nom=it.nom,
                    type=it.type,
                    confidence=it.confidence,
                    match_source=it.match_source,
                    alternatives=it.alternatives,
                    error=it.error_message,
                )
                for it in items
            ]
            return BatchResultsResponse(
                request_id=req.id,
                status=req.status,
                results=results,
                summary=self._summary(req),
            )

    # ---------- mantenimiento ----------

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Borra requests vencidos y sus items. Devuelve cuántos requests se borraron."""
        now = now or utcnow()
        with self.session_factory() as db:
            ids = db.execute(
                select(BatchMatchRequest.id).where(BatchMatchRequest.expires_at < now)
            ).scalars().all()
            if not ids:
                return 0
            # delete masivo: no dispara el cascade del ORM
            db.execute(
                delete(BatchMatchItem)
                .where(BatchMatchItem.request_id.in_(ids))
                .execution_options(synchronize_session=False)
            )
            db.execute(
                delete(BatchMatchRequest)
                .where(BatchMatchRequest.id.in_(ids))
                .execution_options(synchronize_session=False)
            )
            db.commit()

        log.info("cleanup_expired_batches", deleted=len(ids))
        return len(ids)
