"""Recovery-related models."""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from .common import LocationBinding, MachineInfo, SnapshotCandidate, message_payload

RESOURCE_GROUP_PATTERN = re.compile(r"^[a-zA-Z0-9._()-]+$")


class RecoveryStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RecoveryRequest(BaseModel):
    target_network_ids: list[str] = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("target_network_ids", "targetNetworkIds", "targetSubnetIds"),
    )
    target_resource_group: str
    max_time_generated: datetime
    use_original_ip_address: bool = False
    wait_for_completion: bool = False
    vm_filter: Optional[list[str]] = None
    batch_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    model_config = {
        "frozen": True,
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    @field_validator("target_network_ids")
    @classmethod
    def _networks_not_blank(cls, value: list[str]) -> list[str]:
        cleaned = [v.strip() for v in value]
        if any(not v for v in cleaned):
            raise ValueError("target network ids must be non-empty strings")
        return cleaned

    @field_validator("target_resource_group")
    @classmethod
    def _resource_group_syntax(cls, value: str) -> str:
        value = value.strip()
        if not RESOURCE_GROUP_PATTERN.match(value):
            raise ValueError("targetResourceGroup contains invalid characters")
        return value

    @field_validator("max_time_generated")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @field_validator("vm_filter", mode="before")
    @classmethod
    def _flatten_filter(cls, value):
        # older clients send [{"vm": "name"}, ...]
        if isinstance(value, list):
            return [v.get("vm") if isinstance(v, dict) else v for v in value]
        return value

    @classmethod
    def decode(cls, raw: Union[str, bytes, dict[str, Any]]) -> "RecoveryRequest":
        return cls.model_validate(message_payload(raw))


class RecoveryInfo(BaseModel):
    candidates: list[SnapshotCandidate] = Field(default_factory=list)
    bindings: list[LocationBinding] = Field(default_factory=list)

    def network_for(self, location: str) -> Optional[LocationBinding]:
        return next((b for b in self.bindings if b.location == location), None)


class CreationUnit(BaseModel):
    candidate: SnapshotCandidate
    target_network_id: str
    target_resource_group: str
    use_original_ip_address: bool = False
    batch_id: str
    job_id: str

    model_config = {"frozen": True}


class UnitStatus(str, Enum):
    CREATED = "created"
    POLLING = "polling"
    FAILED = "failed"


class UnitResult(BaseModel):
    vm_name: str
    snapshot_id: str
    job_id: Optional[str] = None
    status: UnitStatus
    machine: Optional[MachineInfo] = None
    operation_id: Optional[str] = None
    message: str = ""
    error_kind: Optional[str] = None
    retryable: Optional[bool] = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.status is not UnitStatus.FAILED


class BatchResult(BaseModel):
    batch_id: str
    success: bool
    message: str = ""
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    results: list[UnitResult] = Field(default_factory=list)
    request: Optional[RecoveryRequest] = None

    model_config = {"frozen": True}

    @classmethod
    def empty(cls, request: RecoveryRequest, message: str) -> "BatchResult":
        return cls(batch_id=request.batch_id, success=False, message=message, request=request)

    @classmethod
    def aggregate(cls, request: RecoveryRequest, results: list[UnitResult]) -> "BatchResult":
        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful
        return cls(
            batch_id=request.batch_id,
            success=successful > 0,
            message=f"{successful} of {len(results)} machines recovered, {failed} failed",
            total_processed=len(results),
            successful=successful,
            failed=failed,
            results=list(results),
            request=request,
        )


class RecoveryProgress(BaseModel):
    phase: str = ""
    candidates_total: int = 0
    batches_total: int = 0
    batches_completed: int = 0
    units_succeeded: int = 0
    units_failed: int = 0
    percent: float = 0.0
    message: str = ""


class RecoveryJob(BaseModel):
    id: str
    request: RecoveryRequest
    status: RecoveryStatus = RecoveryStatus.PENDING
    progress: RecoveryProgress = Field(default_factory=RecoveryProgress)
    result: Optional[BatchResult] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
