"""Durable cursor for a batch recovery run."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .recovery import BatchResult, RecoveryInfo, RecoveryRequest, UnitResult


class OrchestrationPhase(str, Enum):
    START = "start"
    RESOLVE = "resolve"
    BATCH = "batch"
    PACING = "pacing"
    AGGREGATE = "aggregate"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (OrchestrationPhase.DONE, OrchestrationPhase.FAILED)


class OrchestrationCheckpoint(BaseModel):
    batch_id: str
    request: RecoveryRequest
    phase: OrchestrationPhase = OrchestrationPhase.START
    recovery_info: Optional[RecoveryInfo] = None
    batch_size: int = 20
    next_batch: int = 0
    results: list[UnitResult] = Field(default_factory=list)
    timer_due: Optional[datetime] = None
    result: Optional[BatchResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def candidates_total(self) -> int:
        return len(self.recovery_info.candidates) if self.recovery_info else 0

    @property
    def batches_total(self) -> int:
        total = self.candidates_total
        return -(-total // self.batch_size) if total else 0

    def batch_slice(self, index: int) -> tuple[int, int]:
        start = index * self.batch_size
        return start, min(start + self.batch_size, self.candidates_total)
