"""Long-running creation poller.

Each queue message carries a complete PollState. Handling a message checks
the operation once and then either finishes the chain or enqueues the next
PollState with a visibility delay. Nothing here ever sleeps for the delay.
"""

import asyncio
import logging
from typing import Optional, Union

from ..clients.base import CreationClient, WorkQueue
from ..errors import ErrorKind, classify, permanent
from ..models.poll import CreationState, PollOutcome, PollOutcomeKind, PollState
from ..models.telemetry import JobLogEntry, JobOperation, JobStatus
from ..retry import RetryPolicy
from .telemetry import TelemetryRecorder

logger = logging.getLogger(__name__)


class CreationPoller:
    def __init__(
        self,
        client: CreationClient,
        queue: WorkQueue,
        telemetry: TelemetryRecorder,
        policy: RetryPolicy,
    ):
        self.client = client
        self.queue = queue
        self.telemetry = telemetry
        self.policy = policy

    @property
    def max_retries(self) -> int:
        return self.policy.max_attempts

    async def handle_message(self, raw: Union[str, bytes, dict]) -> PollOutcome:
        """Decode one queue message and poll it.

        Undecodable or incomplete messages are discarded. Queue errors raised
        while re-enqueueing propagate so the transport redelivers.
        """
        try:
            state = PollState.decode(raw)
        except (ValueError, TypeError) as e:
            return self._discard(f"Invalid queue message format: {e}")

        if not state.vm_name or not state.target_resource_group or not state.operation_id:
            return self._discard("Missing required fields in poll message")

        logger.info(f"Checking VM creation status for: {state.vm_name}, attempt: {state.retry_count + 1}")
        return await self.poll(state)

    async def poll(self, state: PollState) -> PollOutcome:
        try:
            check = await self.client.check_status(state)
        except Exception as e:
            error = classify(e, operation="Status check")
            if not error.retryable:
                return self._failed(state, error.message, error.kind)
            logger.warning(f"Status check for {state.vm_name} failed, will poll again: {error.message}")
            return await self._requeue(state)

        if check.state is CreationState.SUCCEEDED and check.machine is not None:
            return self._completed(state, check.machine)
        if check.state is CreationState.FAILED:
            return self._failed(
                state,
                f"VM creation failed permanently for: {state.vm_name}, error: {check.reason or 'unknown'}",
                ErrorKind.PERMANENT,
            )
        # in progress, or succeeded but not visible yet
        return await self._requeue(state)

    async def _requeue(self, state: PollState) -> PollOutcome:
        next_count = state.retry_count + 1
        if next_count >= self.max_retries:
            message = f"VM creation polling max retries ({self.max_retries}) reached for: {state.vm_name}"
            logger.error(message)
            self._record(state, JobOperation.ERROR, JobStatus.FAILED, message)
            return PollOutcome(
                kind=PollOutcomeKind.FAILED_TIMEOUT,
                job_id=state.job_id,
                vm_name=state.vm_name,
                retry_count=state.retry_count,
                message=message,
                error_kind=ErrorKind.TRANSIENT.value,
            )

        delay = self.policy.next_delay(ErrorKind.TRANSIENT, next_count)
        await self.queue.enqueue(state.next_attempt().encode(), delay)
        logger.info(
            f"VM creation still in progress for: {state.vm_name}, "
            f"retry {next_count}/{self.max_retries} scheduled in {delay:g} seconds"
        )
        return PollOutcome(
            kind=PollOutcomeKind.REQUEUED,
            job_id=state.job_id,
            vm_name=state.vm_name,
            retry_count=next_count,
            delay=delay,
            message=f"Scheduled retry {next_count}/{self.max_retries}",
        )

    def _completed(self, state: PollState, machine) -> PollOutcome:
        snapshot = state.source_snapshot
        message = f"Finished the creation of VM {snapshot.vm_name} from {snapshot.snapshot_id}"
        logger.info(f"VM creation completed successfully: {machine.name} with IP: {machine.ip_address}")
        self._record(
            state,
            JobOperation.CREATE_END,
            JobStatus.COMPLETED,
            message,
            vm_id=machine.id,
            ip_address=machine.ip_address,
        )
        return PollOutcome(
            kind=PollOutcomeKind.COMPLETED,
            job_id=state.job_id,
            vm_name=state.vm_name,
            retry_count=state.retry_count,
            machine=machine,
            message=message,
        )

    def _failed(self, state: PollState, message: str, kind: ErrorKind) -> PollOutcome:
        logger.error(message)
        self._record(state, JobOperation.ERROR, JobStatus.FAILED, message)
        return PollOutcome(
            kind=PollOutcomeKind.FAILED_PERMANENT,
            job_id=state.job_id,
            vm_name=state.vm_name,
            retry_count=state.retry_count,
            message=message,
            error_kind=ErrorKind(kind).value,
        )

    def _discard(self, reason: str) -> PollOutcome:
        error = permanent(reason)
        logger.error(f"{error.message}; message will be discarded")
        return PollOutcome(
            kind=PollOutcomeKind.FAILED_PERMANENT,
            message=error.message,
            error_kind=error.kind.value,
        )

    def _record(self, state: PollState, operation: JobOperation, status: JobStatus, message: str, **extra) -> None:
        self.telemetry.emit(
            JobLogEntry.for_snapshot(
                state.source_snapshot,
                job_id=state.job_id,
                batch_id=state.batch_id,
                operation=operation,
                status=status,
                message=message,
                **extra,
            )
        )


class PollWorker:
    """Drains the in-process queue into the poller with bounded concurrency."""

    def __init__(
        self,
        queue: WorkQueue,
        poller: CreationPoller,
        interval: float = 5.0,
        concurrency: int = 10,
        redelivery_delay: Optional[float] = None,
    ):
        self.queue = queue
        self.poller = poller
        self.interval = interval
        self.redelivery_delay = interval if redelivery_delay is None else redelivery_delay
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _handle(self, raw: str) -> Optional[PollOutcome]:
        async with self._semaphore:
            try:
                return await self.poller.handle_message(raw)
            except Exception as e:
                logger.warning(f"Poll message handling failed, redelivering: {e}")
                await self.queue.enqueue(raw, self.redelivery_delay)
                return None

    async def drain(self, max_rounds: int = 100) -> list[PollOutcome]:
        """Handle currently visible messages, at most ``max_rounds`` receives."""
        outcomes: list[PollOutcome] = []
        for _ in range(max_rounds):
            messages = await self.queue.receive()
            if not messages:
                break
            handled = await asyncio.gather(*(self._handle(m) for m in messages))
            outcomes.extend(o for o in handled if o is not None)
        return outcomes

    async def _run(self) -> None:
        while True:
            try:
                await self.drain()
            except Exception as e:
                logger.error(f"Poll worker iteration failed: {e}")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Poll worker started (interval={self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
