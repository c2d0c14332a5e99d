import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import RecordingQueue, make_candidate
from snap_recovery.clients.memory import InMemoryWorkQueue
from snap_recovery.models.common import MachineInfo, NetworkInterfaceInfo
from snap_recovery.models.poll import CreationState, PollOutcomeKind, PollState, StatusCheck
from snap_recovery.retry import POLL_POLICY, RetryPolicy
from snap_recovery.services.poller import CreationPoller, PollWorker

MACHINE = MachineInfo(name="vm-1", id="/vms/vm-1", ip_address="10.0.0.4")


def make_state(retry_count: int = 0, **overrides) -> PollState:
    fields = {
        "operation_id": "op-1",
        "job_id": "job-1",
        "batch_id": "batch-1",
        "vm_name": "vm-1",
        "target_resource_group": "rg-restore",
        "source_snapshot": make_candidate("vm-1"),
        "network_interface": NetworkInterfaceInfo(name="vm-1-nic", id="/nics/vm-1-nic", ip_address="10.0.0.4"),
        "retry_count": retry_count,
    }
    fields.update(overrides)
    return PollState(**fields)


def make_poller(queue, telemetry, check, policy: RetryPolicy = POLL_POLICY) -> CreationPoller:
    client = MagicMock()
    client.check_status = check if isinstance(check, AsyncMock) else AsyncMock(return_value=check)
    return CreationPoller(client, queue, telemetry, policy)


@pytest.mark.asyncio
async def test_completed(queue, telemetry, sink):
    poller = make_poller(queue, telemetry, StatusCheck(state=CreationState.SUCCEEDED, machine=MACHINE))

    outcome = await poller.poll(make_state(retry_count=3))
    await telemetry.flush()

    assert outcome.kind is PollOutcomeKind.COMPLETED
    assert outcome.terminal
    assert outcome.machine == MACHINE
    assert queue.sent == []
    assert sink.operations == ["VM Create End"]
    assert sink.entries[0].vm_id == "/vms/vm-1"
    assert sink.entries[0].ip_address == "10.0.0.4"


@pytest.mark.asyncio
async def test_in_progress_requeues_with_backoff(queue, telemetry):
    poller = make_poller(queue, telemetry, StatusCheck(state=CreationState.IN_PROGRESS))

    outcome = await poller.poll(make_state(retry_count=0))

    assert outcome.kind is PollOutcomeKind.REQUEUED
    assert not outcome.terminal
    assert outcome.retry_count == 1
    assert outcome.delay == 60.0
    [(message, delay)] = queue.sent
    assert delay == 60.0
    requeued = PollState.decode(message)
    assert requeued.retry_count == 1
    assert requeued.operation_id == "op-1"
    assert requeued.source_snapshot.vm_name == "vm-1"


@pytest.mark.asyncio
async def test_later_attempts_back_off_further(queue, telemetry):
    poller = make_poller(queue, telemetry, StatusCheck(state=CreationState.IN_PROGRESS))

    outcome = await poller.poll(make_state(retry_count=5))

    assert outcome.delay == pytest.approx(60.0 * 1.5 ** 5)
    assert queue.sent[0][1] == outcome.delay


@pytest.mark.asyncio
async def test_last_attempt_times_out_without_requeue(queue, telemetry, sink):
    poller = make_poller(queue, telemetry, StatusCheck(state=CreationState.IN_PROGRESS))

    outcome = await poller.poll(make_state(retry_count=29))
    await telemetry.flush()

    assert outcome.kind is PollOutcomeKind.FAILED_TIMEOUT
    assert queue.sent == []
    assert sink.operations == ["Error"]
    assert "max retries (30)" in outcome.message


@pytest.mark.asyncio
async def test_explicit_failure_is_permanent(queue, telemetry, sink):
    poller = make_poller(
        queue, telemetry, StatusCheck(state=CreationState.FAILED, reason="OSProvisioningTimedOut")
    )

    outcome = await poller.poll(make_state())
    await telemetry.flush()

    assert outcome.kind is PollOutcomeKind.FAILED_PERMANENT
    assert outcome.error_kind == "permanent"
    assert "OSProvisioningTimedOut" in outcome.message
    assert queue.sent == []
    assert sink.operations == ["Error"]


@pytest.mark.asyncio
async def test_non_retryable_check_error_is_permanent(queue, telemetry):
    poller = make_poller(queue, telemetry, AsyncMock(side_effect=PermissionError("Forbidden")))

    outcome = await poller.poll(make_state())

    assert outcome.kind is PollOutcomeKind.FAILED_PERMANENT
    assert outcome.error_kind == "permanent"
    assert queue.sent == []


@pytest.mark.asyncio
async def test_transient_check_error_requeues(queue, telemetry):
    poller = make_poller(queue, telemetry, AsyncMock(side_effect=TimeoutError("read timed out")))

    outcome = await poller.poll(make_state(retry_count=2))

    assert outcome.kind is PollOutcomeKind.REQUEUED
    assert PollState.decode(queue.sent[0][0]).retry_count == 3


@pytest.mark.asyncio
async def test_succeeded_without_machine_keeps_polling(queue, telemetry):
    poller = make_poller(queue, telemetry, StatusCheck(state=CreationState.SUCCEEDED))

    outcome = await poller.poll(make_state())

    assert outcome.kind is PollOutcomeKind.REQUEUED


@pytest.mark.asyncio
async def test_in_flight_retry_count_stays_below_max(telemetry):
    queue = RecordingQueue()
    policy = RetryPolicy(max_attempts=5, base_delay=1.0, multiplier=2.0, max_delay=10.0)
    poller = make_poller(queue, telemetry, StatusCheck(state=CreationState.IN_PROGRESS), policy)

    seen = []
    outcome = await poller.poll(make_state())
    while not outcome.terminal:
        [message] = await queue.receive()
        state = PollState.decode(message)
        seen.append(state.retry_count)
        outcome = await poller.poll(state)

    assert outcome.kind is PollOutcomeKind.FAILED_TIMEOUT
    assert seen == [1, 2, 3, 4]
    assert all(count < policy.max_attempts for count in seen)


@pytest.mark.asyncio
async def test_enqueue_failure_propagates(telemetry):
    poller = make_poller(RecordingQueue(fail=True), telemetry, StatusCheck(state=CreationState.IN_PROGRESS))

    with pytest.raises(ConnectionError):
        await poller.handle_message(make_state().encode())


@pytest.mark.asyncio
async def test_handle_message_accepts_base64_and_plain_json(queue, telemetry):
    poller = make_poller(queue, telemetry, StatusCheck(state=CreationState.SUCCEEDED, machine=MACHINE))
    state = make_state()

    from_base64 = await poller.handle_message(state.encode())
    from_json = await poller.handle_message(state.model_dump_json(by_alias=True))
    from_dict = await poller.handle_message(json.loads(state.model_dump_json(by_alias=True)))

    assert from_base64.kind is PollOutcomeKind.COMPLETED
    assert from_json.kind is PollOutcomeKind.COMPLETED
    assert from_dict.kind is PollOutcomeKind.COMPLETED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "not-a-message",
        "{\"vmName\": \"vm-1\"}",
    ],
)
async def test_malformed_messages_are_discarded(queue, telemetry, raw):
    check = AsyncMock()
    poller = make_poller(queue, telemetry, check)

    outcome = await poller.handle_message(raw)

    assert outcome.kind is PollOutcomeKind.FAILED_PERMANENT
    assert outcome.error_kind == "permanent"
    check.assert_not_awaited()
    assert queue.sent == []


@pytest.mark.asyncio
async def test_message_with_blank_operation_is_discarded(queue, telemetry):
    check = AsyncMock()
    poller = make_poller(queue, telemetry, check)

    outcome = await poller.handle_message(make_state(operation_id="").encode())

    assert outcome.kind is PollOutcomeKind.FAILED_PERMANENT
    assert "Missing required fields" in outcome.message
    check.assert_not_awaited()


@pytest.mark.asyncio
async def test_worker_drains_visible_messages(telemetry):
    clock = [100.0]
    queue = InMemoryWorkQueue(clock=lambda: clock[0])
    poller = make_poller(queue, telemetry, StatusCheck(state=CreationState.IN_PROGRESS))
    worker = PollWorker(queue, poller, interval=1.0, concurrency=2)

    await queue.enqueue(make_state().encode(), 0)
    outcomes = await worker.drain()

    assert [o.kind for o in outcomes] == [PollOutcomeKind.REQUEUED]
    assert len(queue) == 1
    # the requeued message stays hidden until its delay passes
    assert await worker.drain() == []
    clock[0] += 60.0
    assert [o.retry_count for o in await worker.drain()] == [2]


@pytest.mark.asyncio
async def test_worker_redelivers_when_handling_fails(telemetry):
    clock = [0.0]
    queue = InMemoryWorkQueue(clock=lambda: clock[0])
    poller = MagicMock()
    poller.handle_message = AsyncMock(side_effect=ConnectionError("queue unreachable"))
    worker = PollWorker(queue, poller, interval=1.0, redelivery_delay=30.0)

    await queue.enqueue("payload", 0)
    outcomes = await worker.drain()

    assert outcomes == []
    assert len(queue) == 1
    clock[0] += 30.0
    assert await queue.receive() == ["payload"]
