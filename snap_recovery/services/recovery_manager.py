"""Recovery job lifecycle."""

import asyncio
import logging
from typing import Any, Callable, Optional, Union

from ..clients import Backend, create_backend
from ..config import Settings, settings
from ..durable.checkpoint_store import CheckpointStore, InMemoryCheckpointStore, JsonFileCheckpointStore
from ..durable.host import AsyncioHost, OrchestrationHost
from ..errors import classify, permanent
from ..models.checkpoint import OrchestrationCheckpoint
from ..models.recovery import RecoveryJob, RecoveryProgress, RecoveryRequest, RecoveryStatus
from .candidate_resolver import CandidateResolver
from .creation import CreateMachineActivity, CreateMachineAsyncActivity
from .orchestrator import BatchOrchestrator, OrchestratorConfig
from .poller import CreationPoller, PollWorker
from .telemetry import TelemetryRecorder

logger = logging.getLogger(__name__)


class RecoveryManager:
    def __init__(
        self,
        backend: Backend,
        settings: Settings,
        store: Optional[CheckpointStore] = None,
        host: Optional[OrchestrationHost] = None,
    ):
        self.backend = backend
        self.settings = settings
        self.store = store or InMemoryCheckpointStore()
        self.host = host or AsyncioHost()
        self.telemetry = TelemetryRecorder(backend.telemetry)
        self.poller = CreationPoller(backend.creation, backend.queue, self.telemetry, settings.poll_policy())
        self.poll_worker = PollWorker(
            backend.queue,
            self.poller,
            interval=settings.poll_worker_interval,
            concurrency=settings.poll_worker_concurrency,
        )
        self._jobs: dict[str, RecoveryJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._progress_listeners: dict[str, list[Callable]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecoveryManager":
        backend = create_backend(settings)
        if settings.checkpoint_dir:
            store: CheckpointStore = JsonFileCheckpointStore(settings.checkpoint_dir)
        else:
            store = InMemoryCheckpointStore()
        return cls(backend, settings, store)

    def create_job(self, request: RecoveryRequest) -> RecoveryJob:
        existing = self._jobs.get(request.batch_id)
        if existing:
            return existing
        job = RecoveryJob(id=request.batch_id, request=request, created_at=self.host.now())
        self._jobs[job.id] = job
        return job

    def get_job(self, job_id: str) -> Optional[RecoveryJob]:
        return self._jobs.get(job_id)

    def list_jobs(self) -> list[RecoveryJob]:
        return sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)

    def add_progress_listener(self, job_id: str, callback: Callable) -> None:
        self._progress_listeners.setdefault(job_id, []).append(callback)

    def remove_progress_listener(self, job_id: str, callback: Callable) -> None:
        listeners = self._progress_listeners.get(job_id, [])
        if callback in listeners:
            listeners.remove(callback)

    async def submit(self, request: RecoveryRequest) -> str:
        """Accept ``request`` and run it in the background; returns the batch id."""
        job = self.create_job(request)
        await self.start_recovery(job.id)
        return job.id

    async def submit_message(self, raw: Union[str, bytes, dict[str, Any]]) -> str:
        """Accept a recovery request delivered as a queue message.

        Malformed or invalid messages raise a permanent ClassifiedError so the
        caller consumes them instead of redelivering. Anything else raised while
        starting the run propagates.
        """
        try:
            request = RecoveryRequest.decode(raw)
        except (ValueError, TypeError) as e:
            error = permanent(f"Invalid recovery message: {e}")
            logger.error(f"{error.message}; message will be discarded")
            raise error from e
        logger.info(
            f"[{request.batch_id}] Recovery message accepted for {len(request.target_network_ids)} networks"
        )
        return await self.submit(request)

    async def start_recovery(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if not job:
            return
        task = self._tasks.get(job_id)
        if task and not task.done():
            return
        self._tasks[job_id] = asyncio.create_task(self._run_recovery(job))

    async def wait(self, job_id: str) -> Optional[RecoveryJob]:
        task = self._tasks.get(job_id)
        if task:
            await task
        return self._jobs.get(job_id)

    async def resume_pending(self) -> list[str]:
        """Restart every run whose checkpoint has not reached a terminal phase."""
        resumed = []
        for checkpoint in await self.store.list_active():
            task = self._tasks.get(checkpoint.batch_id)
            if task and not task.done():
                continue
            job = self._jobs.get(checkpoint.batch_id)
            if job is None:
                job = RecoveryJob(
                    id=checkpoint.batch_id,
                    request=checkpoint.request,
                    created_at=checkpoint.started_at or self.host.now(),
                )
                self._jobs[job.id] = job
            logger.info(f"[{job.id}] Resuming recovery from phase {checkpoint.phase.value}")
            await self.start_recovery(job.id)
            resumed.append(job.id)
        return resumed

    def _orchestrator(self, job: RecoveryJob) -> BatchOrchestrator:
        creation_policy = self.settings.creation_policy()
        poll_policy = self.settings.poll_policy()

        async def on_progress(checkpoint: OrchestrationCheckpoint) -> None:
            job.progress = _progress_from(checkpoint)
            await self._notify_progress(job)

        return BatchOrchestrator(
            OrchestratorConfig.from_settings(self.settings),
            CandidateResolver(self.backend.locations, self.backend.inventory),
            CreateMachineActivity(self.backend.creation, self.telemetry, self.host, creation_policy),
            CreateMachineAsyncActivity(
                self.backend.creation,
                self.telemetry,
                self.host,
                creation_policy,
                queue=self.backend.queue,
                poll_delay=poll_policy.base_delay,
            ),
            self.host,
            self.store,
            on_progress=on_progress,
        )

    async def _run_recovery(self, job: RecoveryJob) -> None:
        job.status = RecoveryStatus.RUNNING
        await self._notify_progress(job)

        try:
            result = await self._orchestrator(job).run(job.request)
        except asyncio.CancelledError:
            job.status = RecoveryStatus.FAILED
            job.error = "Recovery was cancelled"
            await self._notify_progress(job)
            raise
        except Exception as e:
            error = classify(e)
            job.status = RecoveryStatus.FAILED
            job.error = error.message
            job.error_kind = error.kind.value
            job.completed_at = self.host.now()
            job.progress.message = f"Recovery failed: {error.message}"
            logger.error(f"[{job.id}] Recovery failed ({error.kind.value}): {error.message}")
        else:
            job.status = RecoveryStatus.COMPLETED
            job.result = result
            job.completed_at = self.host.now()
            job.progress.percent = 100.0
            job.progress.message = result.message
        await self._notify_progress(job)

    async def _notify_progress(self, job: RecoveryJob) -> None:
        listeners = self._progress_listeners.get(job.id, [])
        for cb in listeners:
            try:
                await cb(job)
            except Exception as e:
                logger.debug(f"[{job.id}] Progress listener failed: {e}")


def _progress_from(checkpoint: OrchestrationCheckpoint) -> RecoveryProgress:
    succeeded = sum(1 for r in checkpoint.results if r.success)
    batches_total = checkpoint.batches_total
    if batches_total:
        percent = checkpoint.next_batch / batches_total * 100
    else:
        percent = 100.0 if checkpoint.phase.terminal else 0.0
    return RecoveryProgress(
        phase=checkpoint.phase.value,
        candidates_total=checkpoint.candidates_total,
        batches_total=batches_total,
        batches_completed=checkpoint.next_batch,
        units_succeeded=succeeded,
        units_failed=len(checkpoint.results) - succeeded,
        percent=percent,
        message=f"Processed {len(checkpoint.results)}/{checkpoint.candidates_total} VMs",
    )


# Singleton
recovery_manager = RecoveryManager.from_settings(settings)
