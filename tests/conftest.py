"""Shared fakes: a virtual-clock host and scripted collaborators."""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from snap_recovery.clients.base import TelemetrySink, WorkQueue
from snap_recovery.durable.host import OrchestrationHost
from snap_recovery.models.common import DiskRole, LocationBinding, MachineInfo, SnapshotCandidate
from snap_recovery.models.recovery import CreationUnit, RecoveryRequest, UnitResult, UnitStatus
from snap_recovery.services.telemetry import TelemetryRecorder

START = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeHost(OrchestrationHost):
    """Virtual clock: ``sleep`` records the delay and advances ``now``."""

    def __init__(self, start: datetime = START):
        self.current = start
        self.sleeps: list[float] = []
        self._ids = itertools.count(1)

    def now(self) -> datetime:
        return self.current

    def new_id(self) -> str:
        return f"job-{next(self._ids)}"

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)


class RecordingSink(TelemetrySink):
    def __init__(self, fail: bool = False):
        self.entries = []
        self.fail = fail

    async def record(self, entry) -> None:
        if self.fail:
            raise ConnectionError("log ingestion unavailable")
        self.entries.append(entry)

    @property
    def operations(self) -> list[str]:
        return [e.job_operation.value for e in self.entries]


class RecordingQueue(WorkQueue):
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, float]] = []
        self.fail = fail

    async def enqueue(self, message: str, visibility_delay: float = 0) -> None:
        if self.fail:
            raise ConnectionError("queue unreachable")
        self.sent.append((message, visibility_delay))

    async def receive(self, max_messages: int = 16) -> list[str]:
        batch, self.sent = self.sent[:max_messages], self.sent[max_messages:]
        return [m for m, _ in batch]


class FakeCreator:
    """Stands in for a creation activity; tracks how many units run at once."""

    def __init__(self, outcomes: Optional[dict] = None):
        self.outcomes = outcomes or {}
        self.units: list[CreationUnit] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(self, unit: CreationUnit) -> UnitResult:
        self.units.append(unit)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            outcome = self.outcomes.get(unit.candidate.vm_name)
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, UnitResult):
                return outcome
            return UnitResult(
                vm_name=unit.candidate.vm_name,
                snapshot_id=unit.candidate.snapshot_id,
                job_id=unit.job_id,
                status=UnitStatus.CREATED,
                machine=MachineInfo(name=unit.candidate.vm_name, id=f"/vms/{unit.candidate.vm_name}"),
            )
        finally:
            self.in_flight -= 1


def make_candidate(
    name: str,
    location: str = "eastus",
    disk_role: DiskRole = DiskRole.OS,
    time_created: Optional[datetime] = None,
    ip_address: Optional[str] = None,
) -> SnapshotCandidate:
    return SnapshotCandidate(
        vm_name=name,
        vm_size="Standard_B2s",
        disk_sku="Premium_LRS",
        disk_role=disk_role,
        location=location,
        ip_address=ip_address,
        snapshot_id=f"/snapshots/{name}-snap",
        snapshot_name=f"{name}-snap",
        time_created=time_created,
    )


def make_request(**overrides) -> RecoveryRequest:
    data = {
        "targetNetworkIds": ["net-A"],
        "targetResourceGroup": "rg-restore",
        "maxTimeGenerated": "2025-01-01T00:00:00Z",
    }
    data.update(overrides)
    return RecoveryRequest.model_validate(data)


def make_unit(candidate: Optional[SnapshotCandidate] = None, **overrides) -> CreationUnit:
    fields = {
        "candidate": candidate or make_candidate("vm-1"),
        "target_network_id": "net-A",
        "target_resource_group": "rg-restore",
        "batch_id": "batch-1",
        "job_id": "job-1",
    }
    fields.update(overrides)
    return CreationUnit(**fields)


def binding(network_id: str = "net-A", location: str = "eastus") -> LocationBinding:
    return LocationBinding(network_id=network_id, location=location)


def unit_failure(name: str, kind: str = "permanent") -> UnitResult:
    return UnitResult(
        vm_name=name,
        snapshot_id=f"/snapshots/{name}-snap",
        status=UnitStatus.FAILED,
        message="Disk not found",
        error_kind=kind,
        retryable=False,
    )


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def telemetry(sink):
    return TelemetryRecorder(sink)


@pytest.fixture
def queue():
    return RecordingQueue()
