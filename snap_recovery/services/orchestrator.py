"""Batch recovery orchestration.

The run is an explicit step machine over ``OrchestrationPhase``:

    START -> RESOLVE -> (DONE | BATCH) -> [PACING -> BATCH]* -> AGGREGATE -> DONE

The checkpoint is saved after every step, so a run interrupted anywhere can be
resumed from the store. Completed steps are never repeated, an interrupted
step starts over. Clock, ids and timers all come from the OrchestrationHost.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel, Field

from ..config import Settings
from ..durable.checkpoint_store import CheckpointStore
from ..durable.host import OrchestrationHost
from ..errors import ClassifiedError, ErrorKind, classify
from ..models.checkpoint import OrchestrationCheckpoint, OrchestrationPhase
from ..models.recovery import BatchResult, CreationUnit, RecoveryRequest, UnitResult, UnitStatus
from ..retry import RESOLUTION_POLICY, RetryPolicy, call_with_retry
from .candidate_resolver import CandidateResolver
from .creation import CreateMachineActivity, CreateMachineAsyncActivity

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[OrchestrationCheckpoint], Awaitable[None]]


class OrchestratorConfig(BaseModel):
    batch_size: int = Field(20, ge=1)
    delay_between_batches: float = Field(10.0, ge=0)
    resolution_policy: RetryPolicy = RESOLUTION_POLICY

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrchestratorConfig":
        return cls(
            batch_size=settings.batch_size,
            delay_between_batches=settings.delay_between_batches,
            resolution_policy=settings.resolution_policy(),
        )


class BatchOrchestrator:
    def __init__(
        self,
        config: OrchestratorConfig,
        resolver: CandidateResolver,
        create_sync: CreateMachineActivity,
        create_async: CreateMachineAsyncActivity,
        host: OrchestrationHost,
        store: CheckpointStore,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.resolver = resolver
        self.create_sync = create_sync
        self.create_async = create_async
        self.host = host
        self.store = store
        self.on_progress = on_progress

    async def run(self, request: RecoveryRequest) -> BatchResult:
        """Run ``request`` to completion, resuming its checkpoint if one exists.

        Returns the aggregate (possibly empty) result. Raises ClassifiedError
        when resolution fails or a unit fails fatally.
        """
        checkpoint = await self.store.load(request.batch_id)
        if checkpoint is None:
            now = self.host.now()
            checkpoint = OrchestrationCheckpoint(
                batch_id=request.batch_id,
                request=request,
                batch_size=self.config.batch_size,
                started_at=now,
                updated_at=now,
            )
            await self._save(checkpoint)
        else:
            logger.info(f"[{request.batch_id}] Resuming from phase {checkpoint.phase.value}")
        return await self.resume(checkpoint)

    async def resume(self, checkpoint: OrchestrationCheckpoint) -> BatchResult:
        while not checkpoint.phase.terminal:
            checkpoint = await self._step(checkpoint)
            checkpoint.updated_at = self.host.now()
            await self._save(checkpoint)

        if checkpoint.phase is OrchestrationPhase.FAILED:
            raise ClassifiedError(
                ErrorKind(checkpoint.error_kind or ErrorKind.FATAL.value),
                checkpoint.error or "Recovery failed",
            )
        return checkpoint.result

    async def _save(self, checkpoint: OrchestrationCheckpoint) -> None:
        await self.store.save(checkpoint)
        if self.on_progress is None:
            return
        try:
            await self.on_progress(checkpoint)
        except Exception as e:
            logger.warning(f"[{checkpoint.batch_id}] Progress callback failed: {e}")

    async def _step(self, checkpoint: OrchestrationCheckpoint) -> OrchestrationCheckpoint:
        phase = checkpoint.phase
        if phase is OrchestrationPhase.START:
            logger.info(
                f"[{checkpoint.batch_id}] Starting recovery for networks "
                f"{', '.join(checkpoint.request.target_network_ids)}"
            )
            checkpoint.phase = OrchestrationPhase.RESOLVE
            return checkpoint
        if phase is OrchestrationPhase.RESOLVE:
            return await self._resolve(checkpoint)
        if phase is OrchestrationPhase.BATCH:
            return await self._run_batch(checkpoint)
        if phase is OrchestrationPhase.PACING:
            return await self._pace(checkpoint)
        if phase is OrchestrationPhase.AGGREGATE:
            return self._aggregate(checkpoint)
        raise ClassifiedError(ErrorKind.FATAL, f"Invariant violation: cannot step from phase {phase.value}")

    async def _resolve(self, checkpoint: OrchestrationCheckpoint) -> OrchestrationCheckpoint:
        request = checkpoint.request
        try:
            info = await call_with_retry(
                lambda: self.resolver.resolve(request),
                self.config.resolution_policy,
                self.host.sleep,
            )
        except Exception as e:
            return self._fail(checkpoint, classify(e))

        checkpoint.recovery_info = info
        routable = any(info.network_for(c.location) for c in info.candidates)
        if not info.candidates or not info.bindings or not routable:
            message = (
                f"No snapshots found in the same region of networks "
                f"{', '.join(request.target_network_ids)}"
            )
            logger.info(f"[{checkpoint.batch_id}] {message}")
            checkpoint.result = BatchResult.empty(request, message)
            checkpoint.phase = OrchestrationPhase.DONE
            return checkpoint

        logger.info(
            f"[{checkpoint.batch_id}] Starting the restore for {checkpoint.candidates_total} VMs "
            f"in {checkpoint.batches_total} batches"
        )
        checkpoint.next_batch = 0
        checkpoint.phase = OrchestrationPhase.BATCH
        return checkpoint

    async def _run_batch(self, checkpoint: OrchestrationCheckpoint) -> OrchestrationCheckpoint:
        request = checkpoint.request
        info = checkpoint.recovery_info
        index = checkpoint.next_batch
        start, end = checkpoint.batch_slice(index)
        candidates = info.candidates[start:end]
        creator = self.create_sync if request.wait_for_completion else self.create_async
        logger.info(
            f"[{checkpoint.batch_id}] Processing batch {index + 1}/{checkpoint.batches_total} "
            f"with {len(candidates)} VMs"
        )

        slots: list[Union[CreationUnit, UnitResult]] = []
        for candidate in candidates:
            job_id = self.host.new_id()
            binding = info.network_for(candidate.location)
            if binding is None:
                slots.append(
                    UnitResult(
                        vm_name=candidate.vm_name,
                        snapshot_id=candidate.snapshot_id,
                        job_id=job_id,
                        status=UnitStatus.FAILED,
                        message=(
                            f"No network found in location {candidate.location} "
                            f"for snapshot {candidate.snapshot_name or candidate.snapshot_id}"
                        ),
                        error_kind=ErrorKind.PERMANENT.value,
                        retryable=False,
                    )
                )
                continue
            slots.append(
                CreationUnit(
                    candidate=candidate,
                    target_network_id=binding.network_id,
                    target_resource_group=request.target_resource_group,
                    use_original_ip_address=request.use_original_ip_address,
                    batch_id=request.batch_id,
                    job_id=job_id,
                )
            )

        units = [s for s in slots if isinstance(s, CreationUnit)]
        outcomes = iter(await asyncio.gather(*(creator.run(u) for u in units), return_exceptions=True))

        fatal_error: Optional[ClassifiedError] = None
        results: list[UnitResult] = []
        for slot in slots:
            if isinstance(slot, UnitResult):
                results.append(slot)
                continue
            outcome = next(outcomes)
            if isinstance(outcome, UnitResult):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            error = classify(outcome)
            if error.is_fatal and fatal_error is None:
                fatal_error = error
            results.append(
                UnitResult(
                    vm_name=slot.candidate.vm_name,
                    snapshot_id=slot.candidate.snapshot_id,
                    job_id=slot.job_id,
                    status=UnitStatus.FAILED,
                    message=error.message,
                    error_kind=error.kind.value,
                    retryable=error.retryable,
                )
            )

        checkpoint.results.extend(results)
        checkpoint.next_batch = index + 1
        failed = sum(1 for r in results if not r.success)
        logger.info(
            f"[{checkpoint.batch_id}] Batch {index + 1} done: "
            f"{len(results) - failed} succeeded, {failed} failed"
        )

        if fatal_error is not None:
            return self._fail(checkpoint, fatal_error)

        if checkpoint.next_batch >= checkpoint.batches_total:
            checkpoint.phase = OrchestrationPhase.AGGREGATE
        elif self.config.delay_between_batches > 0:
            checkpoint.timer_due = self.host.now() + timedelta(seconds=self.config.delay_between_batches)
            checkpoint.phase = OrchestrationPhase.PACING
        else:
            checkpoint.phase = OrchestrationPhase.BATCH
        return checkpoint

    async def _pace(self, checkpoint: OrchestrationCheckpoint) -> OrchestrationCheckpoint:
        if checkpoint.timer_due is not None:
            remaining = (checkpoint.timer_due - self.host.now()).total_seconds()
            if remaining > 0:
                logger.info(f"[{checkpoint.batch_id}] Waiting {remaining:g}s before next batch")
                await self.host.sleep(remaining)
        checkpoint.timer_due = None
        checkpoint.phase = OrchestrationPhase.BATCH
        return checkpoint

    def _aggregate(self, checkpoint: OrchestrationCheckpoint) -> OrchestrationCheckpoint:
        result = BatchResult.aggregate(checkpoint.request, checkpoint.results)
        logger.info(f"[{checkpoint.batch_id}] {result.message}")
        checkpoint.result = result
        checkpoint.phase = OrchestrationPhase.DONE
        return checkpoint

    def _fail(self, checkpoint: OrchestrationCheckpoint, error: ClassifiedError) -> OrchestrationCheckpoint:
        logger.error(f"[{checkpoint.batch_id}] Recovery aborted ({error.kind.value}): {error.message}")
        checkpoint.error = error.message
        checkpoint.error_kind = error.kind.value
        checkpoint.phase = OrchestrationPhase.FAILED
        return checkpoint
