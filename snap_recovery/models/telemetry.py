"""Job log records shipped to the telemetry sink."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from .common import SnapshotCandidate


class JobOperation(str, Enum):
    CREATE_START = "VM Create Start"
    CREATE_POLLING = "VM Create Polling"
    CREATE_END = "VM Create End"
    ERROR = "Error"


class JobStatus(str, Enum):
    IN_PROGRESS = "Restore In Progress"
    COMPLETED = "Restore Completed"
    FAILED = "Restore Failed"


class JobLogEntry(BaseModel):
    batch_id: Optional[str] = None
    job_id: str
    job_operation: JobOperation
    job_status: JobStatus
    job_type: str = "Restore"
    message: str
    vm_name: Optional[str] = None
    vm_size: Optional[str] = None
    disk_profile: Optional[str] = None
    disk_sku: Optional[str] = None
    snapshot_id: Optional[str] = None
    snapshot_name: Optional[str] = None
    vm_id: Optional[str] = None
    ip_address: Optional[str] = None
    time_generated: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    @classmethod
    def for_snapshot(
        cls,
        snapshot: Optional[SnapshotCandidate],
        *,
        job_id: str,
        batch_id: Optional[str],
        operation: JobOperation,
        status: JobStatus,
        message: str,
        **extra,
    ) -> "JobLogEntry":
        fields = {}
        if snapshot is not None:
            fields = {
                "vm_name": snapshot.vm_name,
                "vm_size": snapshot.vm_size,
                "disk_profile": snapshot.disk_role.value,
                "disk_sku": snapshot.disk_sku,
                "snapshot_id": snapshot.snapshot_id,
                "snapshot_name": snapshot.snapshot_name,
            }
        fields.update(extra)
        return cls(
            job_id=job_id,
            batch_id=batch_id,
            job_operation=operation,
            job_status=status,
            message=message,
            **fields,
        )
