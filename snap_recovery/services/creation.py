"""Machine creation activities.

Both variants take one CreationUnit and return a UnitResult. Non-fatal
failures never escape: they are logged, recorded as ``Error`` telemetry and
folded into a ``failed`` result. Fatal errors are raised so the orchestrator
can abort the request.
"""

import logging
from typing import Optional

from ..clients.base import CreationClient, WorkQueue
from ..durable.host import OrchestrationHost
from ..errors import ClassifiedError, business, classify, permanent
from ..models.common import DiskRole, MachineInfo
from ..models.poll import PollState
from ..models.recovery import CreationUnit, UnitResult, UnitStatus
from ..models.telemetry import JobLogEntry, JobOperation, JobStatus
from ..retry import RetryPolicy, call_with_retry
from .telemetry import TelemetryRecorder

logger = logging.getLogger(__name__)


class _CreationActivity:
    def __init__(
        self,
        client: CreationClient,
        telemetry: TelemetryRecorder,
        host: OrchestrationHost,
        policy: RetryPolicy,
    ):
        self.client = client
        self.telemetry = telemetry
        self.host = host
        self.policy = policy

    async def run(self, unit: CreationUnit) -> UnitResult:
        snapshot = unit.candidate
        self._record(
            unit,
            JobOperation.CREATE_START,
            JobStatus.IN_PROGRESS,
            f"Starting VM creation for {snapshot.vm_name} from {snapshot.snapshot_id}",
        )
        try:
            self._validate(unit)
            return await self._create(unit)
        except Exception as e:
            return self._failed(unit, classify(e))

    async def _create(self, unit: CreationUnit) -> UnitResult:
        raise NotImplementedError

    def _validate(self, unit: CreationUnit) -> None:
        snapshot = unit.candidate
        if not snapshot.snapshot_id:
            raise permanent("sourceSnapshot is required")
        if not snapshot.vm_name:
            raise permanent("vmName is required")
        if not unit.target_network_id:
            raise permanent("targetNetworkId is required")
        if not unit.target_resource_group:
            raise permanent("targetResourceGroup is required")
        if snapshot.disk_role is not DiskRole.OS:
            raise business(
                f"Cannot create VM from {snapshot.disk_role.value}-disk snapshot. "
                "Only os-disk snapshots are supported."
            )

    def _record(
        self,
        unit: CreationUnit,
        operation: JobOperation,
        status: JobStatus,
        message: str,
        machine: Optional[MachineInfo] = None,
    ) -> None:
        extra = {}
        if machine is not None:
            extra = {"vm_id": machine.id, "ip_address": machine.ip_address}
        self.telemetry.emit(
            JobLogEntry.for_snapshot(
                unit.candidate,
                job_id=unit.job_id,
                batch_id=unit.batch_id,
                operation=operation,
                status=status,
                message=message,
                **extra,
            )
        )

    def _failed(self, unit: CreationUnit, error: ClassifiedError) -> UnitResult:
        snapshot = unit.candidate
        message = f"Failed to create VM from snapshot {snapshot.snapshot_id}: {error.message}"
        logger.error(f"[{unit.job_id}] {message} (kind={error.kind.value}, retryable={error.retryable})")
        self._record(unit, JobOperation.ERROR, JobStatus.FAILED, message)
        if error.is_fatal:
            raise error
        return UnitResult(
            vm_name=snapshot.vm_name,
            snapshot_id=snapshot.snapshot_id,
            job_id=unit.job_id,
            status=UnitStatus.FAILED,
            message=error.message,
            error_kind=error.kind.value,
            retryable=error.retryable,
        )


class CreateMachineActivity(_CreationActivity):
    """Creates the machine and waits until the control plane reports it done."""

    async def _create(self, unit: CreationUnit) -> UnitResult:
        snapshot = unit.candidate
        machine = await call_with_retry(
            lambda: self.client.create_machine(unit),
            self.policy,
            self.host.sleep,
            operation="VM creation",
        )
        message = f"Finished the creation of VM {snapshot.vm_name} from {snapshot.snapshot_id}"
        logger.info(f"[{unit.job_id}] {message} with IP {machine.ip_address}")
        self._record(unit, JobOperation.CREATE_END, JobStatus.COMPLETED, message, machine=machine)
        return UnitResult(
            vm_name=snapshot.vm_name,
            snapshot_id=snapshot.snapshot_id,
            job_id=unit.job_id,
            status=UnitStatus.CREATED,
            machine=machine,
            message=message,
        )


class CreateMachineAsyncActivity(_CreationActivity):
    """Starts creation and hands the long-running operation to the poller."""

    def __init__(
        self,
        client: CreationClient,
        telemetry: TelemetryRecorder,
        host: OrchestrationHost,
        policy: RetryPolicy,
        queue: WorkQueue,
        poll_delay: float,
    ):
        super().__init__(client, telemetry, host, policy)
        self.queue = queue
        self.poll_delay = poll_delay

    async def _create(self, unit: CreationUnit) -> UnitResult:
        snapshot = unit.candidate
        accepted = await call_with_retry(
            lambda: self.client.begin_create_machine(unit),
            self.policy,
            self.host.sleep,
            operation="VM creation",
        )

        state = PollState(
            operation_id=accepted.operation_id,
            job_id=unit.job_id,
            batch_id=unit.batch_id,
            vm_name=snapshot.vm_name,
            target_resource_group=unit.target_resource_group,
            source_snapshot=snapshot,
            network_interface=accepted.network_interface,
            created_at=self.host.now(),
        )
        message_text = state.encode()
        await call_with_retry(
            lambda: self.queue.enqueue(message_text, self.poll_delay),
            self.policy,
            self.host.sleep,
            operation="Poll dispatch",
        )

        message = (
            f"VM creation polling initiated for {snapshot.vm_name}, "
            f"operation ID: {accepted.operation_id}"
        )
        logger.info(f"[{unit.job_id}] {message}")
        self._record(unit, JobOperation.CREATE_POLLING, JobStatus.IN_PROGRESS, message)
        return UnitResult(
            vm_name=snapshot.vm_name,
            snapshot_id=snapshot.snapshot_id,
            job_id=unit.job_id,
            status=UnitStatus.POLLING,
            operation_id=accepted.operation_id,
            message=message,
        )
