from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import RecordingSink, make_candidate, make_unit
from snap_recovery.errors import ClassifiedError, ErrorKind
from snap_recovery.models.common import DiskRole, MachineInfo, NetworkInterfaceInfo
from snap_recovery.models.poll import CreationAccepted, PollState
from snap_recovery.models.recovery import UnitStatus
from snap_recovery.retry import AZURE_POLICY
from snap_recovery.services.creation import CreateMachineActivity, CreateMachineAsyncActivity
from snap_recovery.services.telemetry import TelemetryRecorder

MACHINE = MachineInfo(name="vm-1", id="/vms/vm-1", ip_address="10.0.0.7")


def sync_activity(client, telemetry, host):
    return CreateMachineActivity(client, telemetry, host, AZURE_POLICY)


def async_activity(client, telemetry, host, queue):
    return CreateMachineAsyncActivity(client, telemetry, host, AZURE_POLICY, queue=queue, poll_delay=60.0)


@pytest.mark.asyncio
async def test_sync_creation_success(telemetry, sink, host):
    client = MagicMock()
    client.create_machine = AsyncMock(return_value=MACHINE)

    result = await sync_activity(client, telemetry, host).run(make_unit())
    await telemetry.flush()

    assert result.status is UnitStatus.CREATED
    assert result.success
    assert result.machine == MACHINE
    assert result.job_id == "job-1"
    assert sink.operations == ["VM Create Start", "VM Create End"]
    assert sink.entries[1].ip_address == "10.0.0.7"
    assert {e.batch_id for e in sink.entries} == {"batch-1"}


@pytest.mark.asyncio
async def test_data_disk_is_a_business_failure(telemetry, sink, host):
    client = MagicMock()
    client.create_machine = AsyncMock()
    unit = make_unit(make_candidate("vm-2", disk_role=DiskRole.DATA))

    result = await sync_activity(client, telemetry, host).run(unit)
    await telemetry.flush()

    assert result.status is UnitStatus.FAILED
    assert result.error_kind == "business"
    assert result.retryable is False
    assert "Only os-disk snapshots are supported" in result.message
    client.create_machine.assert_not_awaited()
    assert sink.operations == ["VM Create Start", "Error"]


@pytest.mark.asyncio
async def test_missing_resource_group_is_permanent(telemetry, host):
    client = MagicMock()
    client.create_machine = AsyncMock()

    result = await sync_activity(client, telemetry, host).run(make_unit(target_resource_group=""))

    assert result.error_kind == "permanent"
    client.create_machine.assert_not_awaited()


@pytest.mark.asyncio
async def test_transient_errors_are_retried(telemetry, host):
    client = MagicMock()
    client.create_machine = AsyncMock(side_effect=[TimeoutError("slow"), MACHINE])

    result = await sync_activity(client, telemetry, host).run(make_unit())

    assert result.status is UnitStatus.CREATED
    assert client.create_machine.await_count == 2
    assert host.sleeps == [2.0]


@pytest.mark.asyncio
async def test_permanent_errors_are_not_retried(telemetry, host):
    client = MagicMock()
    client.create_machine = AsyncMock(side_effect=RuntimeError("Disk vm-1-disk already exists"))

    result = await sync_activity(client, telemetry, host).run(make_unit())

    assert result.status is UnitStatus.FAILED
    assert result.error_kind == "permanent"
    assert result.message.startswith("VM creation failed (resource already exists)")
    assert client.create_machine.await_count == 1
    assert host.sleeps == []


@pytest.mark.asyncio
async def test_retries_are_bounded(telemetry, host):
    client = MagicMock()
    client.create_machine = AsyncMock(side_effect=TimeoutError("slow"))

    result = await sync_activity(client, telemetry, host).run(make_unit())

    assert result.status is UnitStatus.FAILED
    assert result.retryable is True
    assert client.create_machine.await_count == AZURE_POLICY.max_attempts
    assert host.sleeps == [2.0, 3.0]


@pytest.mark.asyncio
async def test_fatal_errors_escape(telemetry, sink, host):
    client = MagicMock()
    client.create_machine = AsyncMock(side_effect=RuntimeError("Configuration error: no subscription"))

    with pytest.raises(ClassifiedError) as exc_info:
        await sync_activity(client, telemetry, host).run(make_unit())
    await telemetry.flush()

    assert exc_info.value.kind is ErrorKind.FATAL
    assert sink.operations == ["VM Create Start", "Error"]


@pytest.mark.asyncio
async def test_async_creation_hands_off_to_poller(telemetry, sink, host, queue):
    nic = NetworkInterfaceInfo(name="vm-1-nic", id="/nics/vm-1-nic", ip_address="10.0.0.9")
    client = MagicMock()
    client.begin_create_machine = AsyncMock(
        return_value=CreationAccepted(operation_id="op-42", network_interface=nic)
    )

    result = await async_activity(client, telemetry, host, queue).run(make_unit())
    await telemetry.flush()

    assert result.status is UnitStatus.POLLING
    assert result.success
    assert result.operation_id == "op-42"
    [(message, delay)] = queue.sent
    assert delay == 60.0
    state = PollState.decode(message)
    assert state.operation_id == "op-42"
    assert state.job_id == "job-1"
    assert state.batch_id == "batch-1"
    assert state.retry_count == 0
    assert state.network_interface == nic
    assert state.created_at == host.now()
    assert sink.operations == ["VM Create Start", "VM Create Polling"]


@pytest.mark.asyncio
async def test_async_creation_failure_enqueues_nothing(telemetry, host, queue):
    client = MagicMock()
    client.begin_create_machine = AsyncMock(side_effect=RuntimeError("Forbidden"))

    result = await async_activity(client, telemetry, host, queue).run(make_unit())

    assert result.status is UnitStatus.FAILED
    assert result.error_kind == "permanent"
    assert queue.sent == []


@pytest.mark.asyncio
async def test_telemetry_failure_does_not_affect_creation(host):
    telemetry = TelemetryRecorder(RecordingSink(fail=True))
    client = MagicMock()
    client.create_machine = AsyncMock(return_value=MACHINE)

    result = await sync_activity(client, telemetry, host).run(make_unit())
    await telemetry.flush()

    assert result.status is UnitStatus.CREATED
