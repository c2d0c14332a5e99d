"""In-process collaborators for local runs and tests."""

import heapq
import itertools
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from ..config import Settings
from ..models.common import LocationBinding, MachineInfo, NetworkInterfaceInfo, SnapshotCandidate
from ..models.poll import CreationAccepted, CreationState, PollState, StatusCheck
from ..models.recovery import CreationUnit
from ..models.telemetry import JobLogEntry
from .base import Backend, CandidateInventory, CreationClient, LocationResolver, TelemetrySink, WorkQueue
from .registry import register_backend

logger = logging.getLogger(__name__)
telemetry_logger = logging.getLogger("snap_recovery.telemetry")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _aware(dt: Optional[datetime]) -> datetime:
    if dt is None:
        return _EPOCH
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class InMemoryInventory(CandidateInventory):
    def __init__(self, snapshots: Optional[list[SnapshotCandidate]] = None):
        self._snapshots: list[SnapshotCandidate] = list(snapshots or [])

    def add(self, snapshot: SnapshotCandidate) -> None:
        self._snapshots.append(snapshot)

    async def find_candidates(
        self,
        regions: list[str],
        cutoff: datetime,
        vm_filter: Optional[list[str]] = None,
    ) -> list[SnapshotCandidate]:
        wanted_regions = set(regions)
        wanted_names = {name.lower() for name in vm_filter} if vm_filter else None
        limit = _aware(cutoff)

        latest: dict[str, SnapshotCandidate] = {}
        for snap in self._snapshots:
            if snap.location not in wanted_regions:
                continue
            if wanted_names is not None and snap.vm_name.lower() not in wanted_names:
                continue
            if snap.time_created is not None and _aware(snap.time_created) > limit:
                continue
            current = latest.get(snap.vm_name)
            if current is None or _aware(snap.time_created) > _aware(current.time_created):
                latest[snap.vm_name] = snap

        return [latest[name] for name in sorted(latest)]


class InMemoryLocationResolver(LocationResolver):
    def __init__(self, networks: Optional[dict[str, str]] = None):
        self._networks: dict[str, str] = dict(networks or {})

    def add(self, network_id: str, location: str) -> None:
        self._networks[network_id] = location

    async def resolve_regions(self, network_ids: list[str]) -> list[LocationBinding]:
        bindings = []
        for network_id in network_ids:
            location = self._networks.get(network_id)
            if location is None:
                raise LookupError(f"Network {network_id} not found")
            bindings.append(LocationBinding(network_id=network_id, location=location))
        return bindings


class InMemoryCreationClient(CreationClient):
    """Creates machines instantly, or after ``polls_until_ready`` status checks."""

    def __init__(self, polls_until_ready: int = 1):
        self.polls_until_ready = polls_until_ready
        self.failures: dict[str, Exception] = {}
        self.machines: dict[str, MachineInfo] = {}
        self._operations: dict[str, tuple[CreationUnit, NetworkInterfaceInfo, int]] = {}
        self._addresses = itertools.count(4)

    def fail_for(self, vm_name: str, error: Exception) -> None:
        self.failures[vm_name] = error

    def _allocate_nic(self, unit: CreationUnit) -> NetworkInterfaceInfo:
        snapshot = unit.candidate
        if unit.use_original_ip_address and snapshot.ip_address:
            address = snapshot.ip_address
        else:
            address = f"10.0.0.{next(self._addresses)}"
        name = f"{snapshot.vm_name}-nic"
        return NetworkInterfaceInfo(
            name=name,
            id=f"{unit.target_network_id}/networkInterfaces/{name}",
            ip_address=address,
        )

    def _machine(self, unit: CreationUnit, nic: NetworkInterfaceInfo) -> MachineInfo:
        name = unit.candidate.vm_name
        return MachineInfo(
            name=name,
            id=f"/resourceGroups/{unit.target_resource_group}/virtualMachines/{name}",
            ip_address=nic.ip_address,
        )

    async def create_machine(self, unit: CreationUnit) -> MachineInfo:
        error = self.failures.get(unit.candidate.vm_name)
        if error is not None:
            raise error
        machine = self._machine(unit, self._allocate_nic(unit))
        self.machines[machine.name] = machine
        return machine

    async def begin_create_machine(self, unit: CreationUnit) -> CreationAccepted:
        error = self.failures.get(unit.candidate.vm_name)
        if error is not None:
            raise error
        nic = self._allocate_nic(unit)
        operation_id = str(uuid.uuid4())
        self._operations[operation_id] = (unit, nic, 0)
        return CreationAccepted(operation_id=operation_id, network_interface=nic)

    async def check_status(self, state: PollState) -> StatusCheck:
        entry = self._operations.get(state.operation_id)
        if entry is None:
            return StatusCheck(state=CreationState.FAILED, reason=f"Operation {state.operation_id} is unknown")
        unit, nic, checks = entry
        checks += 1
        self._operations[state.operation_id] = (unit, nic, checks)
        if checks < self.polls_until_ready:
            return StatusCheck(state=CreationState.IN_PROGRESS)
        machine = self._machine(unit, nic)
        self.machines[machine.name] = machine
        return StatusCheck(state=CreationState.SUCCEEDED, machine=machine)


class InMemoryWorkQueue(WorkQueue):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: list[tuple[float, int, str]] = []
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    async def enqueue(self, message: str, visibility_delay: float = 0) -> None:
        visible_at = self._clock() + max(0.0, visibility_delay)
        heapq.heappush(self._heap, (visible_at, next(self._seq), message))

    async def receive(self, max_messages: int = 16) -> list[str]:
        now = self._clock()
        messages = []
        while self._heap and len(messages) < max_messages and self._heap[0][0] <= now:
            messages.append(heapq.heappop(self._heap)[2])
        return messages


class LoggingTelemetrySink(TelemetrySink):
    async def record(self, entry: JobLogEntry) -> None:
        telemetry_logger.info(entry.model_dump_json(by_alias=True, exclude_none=True))


def load_inventory_file(path: Path) -> tuple[list[SnapshotCandidate], dict[str, str]]:
    """Read ``{"snapshots": [...], "networks": {id: region}}``."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    snapshots = [SnapshotCandidate.model_validate(s) for s in data.get("snapshots", [])]
    networks = {str(k): str(v) for k, v in data.get("networks", {}).items()}
    return snapshots, networks


def build_memory_backend(settings: Settings) -> Backend:
    snapshots: list[SnapshotCandidate] = []
    networks: dict[str, str] = {}
    if settings.inventory_file:
        snapshots, networks = load_inventory_file(settings.inventory_file)
        logger.info(
            f"Loaded {len(snapshots)} snapshots and {len(networks)} networks from {settings.inventory_file}"
        )
    return Backend(
        name="memory",
        inventory=InMemoryInventory(snapshots),
        locations=InMemoryLocationResolver(networks),
        creation=InMemoryCreationClient(),
        queue=InMemoryWorkQueue(),
        telemetry=LoggingTelemetrySink(),
    )


# Auto-register
register_backend("memory", build_memory_backend)
