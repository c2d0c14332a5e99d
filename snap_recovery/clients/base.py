"""Abstract collaborator interfaces.

Cloud control planes, the snapshot inventory, the message queue and the
telemetry sink are all reached through these. Implementations raise whatever
their SDK raises; callers classify it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..models.common import LocationBinding, MachineInfo, SnapshotCandidate
from ..models.poll import CreationAccepted, PollState, StatusCheck
from ..models.recovery import CreationUnit
from ..models.telemetry import JobLogEntry


class CandidateInventory(ABC):

    @abstractmethod
    async def find_candidates(
        self,
        regions: list[str],
        cutoff: datetime,
        vm_filter: Optional[list[str]] = None,
    ) -> list[SnapshotCandidate]:
        """Most recent snapshot per machine taken at or before ``cutoff``."""
        ...


class LocationResolver(ABC):

    @abstractmethod
    async def resolve_regions(self, network_ids: list[str]) -> list[LocationBinding]:
        ...


class CreationClient(ABC):

    @abstractmethod
    async def create_machine(self, unit: CreationUnit) -> MachineInfo:
        """Create disk, network interface and machine; return once it exists."""
        ...

    @abstractmethod
    async def begin_create_machine(self, unit: CreationUnit) -> CreationAccepted:
        """Start creation and return as soon as the control plane accepts it."""
        ...

    @abstractmethod
    async def check_status(self, state: PollState) -> StatusCheck:
        ...


class WorkQueue(ABC):

    @abstractmethod
    async def enqueue(self, message: str, visibility_delay: float = 0) -> None:
        """At-least-once delivery; the message stays hidden for ``visibility_delay`` seconds."""
        ...

    @abstractmethod
    async def receive(self, max_messages: int = 16) -> list[str]:
        """Pop messages that are currently visible."""
        ...


class TelemetrySink(ABC):

    @abstractmethod
    async def record(self, entry: JobLogEntry) -> None:
        ...


@dataclass
class Backend:
    """The collaborators one deployment talks to."""

    name: str
    inventory: CandidateInventory
    locations: LocationResolver
    creation: CreationClient
    queue: WorkQueue
    telemetry: TelemetrySink
