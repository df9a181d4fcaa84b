from __future__ import annotations

from datetime import datetime, timezone

from pydantic import Field, field_serializer

from app.services.batch.status import BatchStatus, ItemStatus
from app.services.territoires.types import CamelModel, MatchHints


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite devuelve datetimes sin tz; se guardan siempre en UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BatchItemIn(CamelModel):
    query: str | None = None
    hints: MatchHints | None = None


class BatchSubmitRequest(CamelModel):
    # items opcional: su ausencia se reporta como INVALID_REQUEST con mensaje propio
    items: list[BatchItemIn] | None = None
    client_id: str | None = Field(default=None, max_length=100)
    webhook_url: str | None = Field(default=None, max_length=1000)


class BatchSubmitResponse(CamelModel):
    request_id: str
    status: BatchStatus
    total_items: int
    estimated_duration: int
    status_url: str
    results_url: str


class BatchStatusResponse(CamelModel):
    request_id: str
    status: BatchStatus
    total_items: int
    processed: int
    matched: int
    suggestions: int
    failed: int
    progress: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_serializer("created_at", "started_at", "completed_at")
    def _utc(self, value: datetime | None):
        value = as_utc(value)
        return value.isoformat() if value else None


class BatchSummary(CamelModel):
    total: int
    matched: int
    suggestions: int
    failed: int
    success_rate: int


class BatchItemResult(CamelModel):
    index: int
    query: str
    status: ItemStatus
    code: str | None = None
    nom: str | None = None
    type: str | None = None
    confidence: float | None = None
    match_source: str | None = None
    alternatives: list[dict] | None = None
    error: str | None = None


class BatchResultsResponse(CamelModel):
    request_id: str
    status: BatchStatus
    message: str | None = None
    results: list[BatchItemResult]
    summary: BatchSummary
    retry_after: int | None = Field(default=None, exclude=True)
