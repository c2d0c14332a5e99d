"""Fire-and-forget telemetry."""

import asyncio
import logging

from ..clients.base import TelemetrySink
from ..models.telemetry import JobLogEntry

logger = logging.getLogger(__name__)


class TelemetryRecorder:
    """Wraps a sink so that recording never blocks or fails the caller."""

    def __init__(self, sink: TelemetrySink):
        self._sink = sink
        self._pending: set[asyncio.Task] = set()

    def emit(self, entry: JobLogEntry) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._record(entry))
        except RuntimeError:
            logger.warning(f"No running loop, dropping telemetry for job {entry.job_id}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record(self, entry: JobLogEntry) -> None:
        try:
            await self._sink.record(entry)
        except Exception as e:
            logger.warning(f"Telemetry write failed for job {entry.job_id}: {e}")

    async def flush(self) -> None:
        """Wait for everything emitted so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
