"""Poll messages and outcomes for in-flight machine creation."""

import base64
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from .common import MachineInfo, NetworkInterfaceInfo, SnapshotCandidate, message_payload


class PollState(BaseModel):
    """Self-contained record of one in-flight creation; travels on the queue."""

    operation_id: str
    job_id: str
    batch_id: str
    vm_name: str
    target_resource_group: str
    source_snapshot: SnapshotCandidate
    network_interface: Optional[NetworkInterfaceInfo] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    retry_count: int = Field(0, ge=0)

    model_config = {
        "frozen": True,
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    def next_attempt(self) -> "PollState":
        return self.model_copy(update={"retry_count": self.retry_count + 1})

    def encode(self) -> str:
        text = self.model_dump_json(by_alias=True)
        return base64.b64encode(text.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, raw: Union[str, bytes, dict[str, Any]]) -> "PollState":
        """Parse a queue message: base64 JSON, plain JSON, or an already-parsed dict."""
        return cls.model_validate(message_payload(raw))


class CreationAccepted(BaseModel):
    """Returned when the control plane has accepted a long-running create."""

    operation_id: str
    network_interface: Optional[NetworkInterfaceInfo] = None


class CreationState(str, Enum):
    SUCCEEDED = "succeeded"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"


class StatusCheck(BaseModel):
    state: CreationState
    machine: Optional[MachineInfo] = None
    reason: str = ""


class PollOutcomeKind(str, Enum):
    COMPLETED = "completed"
    FAILED_PERMANENT = "failed_permanent"
    REQUEUED = "requeued"
    FAILED_TIMEOUT = "failed_timeout"


class PollOutcome(BaseModel):
    kind: PollOutcomeKind
    job_id: str = ""
    vm_name: str = ""
    retry_count: int = 0
    machine: Optional[MachineInfo] = None
    delay: Optional[float] = None
    message: str = ""
    error_kind: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.kind is not PollOutcomeKind.REQUEUED
