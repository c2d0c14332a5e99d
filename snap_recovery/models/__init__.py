"""Data models."""

from .common import (
    DiskRole,
    LocationBinding,
    MachineInfo,
    NetworkInterfaceInfo,
    SecurityType,
    SnapshotCandidate,
)
from .recovery import (
    BatchResult,
    CreationUnit,
    RecoveryInfo,
    RecoveryJob,
    RecoveryRequest,
    RecoveryStatus,
    UnitResult,
    UnitStatus,
)
from .poll import (
    CreationAccepted,
    CreationState,
    PollOutcome,
    PollOutcomeKind,
    PollState,
    StatusCheck,
)
from .telemetry import JobLogEntry, JobOperation, JobStatus
from .checkpoint import OrchestrationCheckpoint, OrchestrationPhase

__all__ = [
    "DiskRole",
    "LocationBinding",
    "MachineInfo",
    "NetworkInterfaceInfo",
    "SecurityType",
    "SnapshotCandidate",
    "BatchResult",
    "CreationUnit",
    "RecoveryInfo",
    "RecoveryJob",
    "RecoveryRequest",
    "RecoveryStatus",
    "UnitResult",
    "UnitStatus",
    "CreationAccepted",
    "CreationState",
    "PollOutcome",
    "PollOutcomeKind",
    "PollState",
    "StatusCheck",
    "JobLogEntry",
    "JobOperation",
    "JobStatus",
    "OrchestrationCheckpoint",
    "OrchestrationPhase",
]
