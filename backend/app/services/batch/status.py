from __future__ import annotations

from enum import Enum


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED)


class ItemStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    SUGGESTIONS = "suggestions"
    FAILED = "failed"
