"""Checkpoint persistence."""

import asyncio
import logging
from urllib.parse import quote
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..models.checkpoint import OrchestrationCheckpoint

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):

    @abstractmethod
    async def load(self, batch_id: str) -> Optional[OrchestrationCheckpoint]:
        ...

    @abstractmethod
    async def save(self, checkpoint: OrchestrationCheckpoint) -> None:
        ...

    @abstractmethod
    async def list_active(self) -> list[OrchestrationCheckpoint]:
        """Checkpoints whose run has not reached a terminal phase."""
        ...


class InMemoryCheckpointStore(CheckpointStore):
    def __init__(self):
        self._items: dict[str, str] = {}

    async def load(self, batch_id: str) -> Optional[OrchestrationCheckpoint]:
        raw = self._items.get(batch_id)
        if raw is None:
            return None
        return OrchestrationCheckpoint.model_validate_json(raw)

    async def save(self, checkpoint: OrchestrationCheckpoint) -> None:
        # stored serialized so callers never share a mutable instance
        self._items[checkpoint.batch_id] = checkpoint.model_dump_json()

    async def list_active(self) -> list[OrchestrationCheckpoint]:
        checkpoints = [OrchestrationCheckpoint.model_validate_json(raw) for raw in self._items.values()]
        return [c for c in checkpoints if not c.phase.terminal]


class JsonFileCheckpointStore(CheckpointStore):
    """One JSON document per batch under ``directory``."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, batch_id: str) -> Path:
        return self.directory / f"{quote(batch_id, safe='')}.json"

    async def load(self, batch_id: str) -> Optional[OrchestrationCheckpoint]:
        path = self._path(batch_id)
        if not path.exists():
            return None
        checkpoint = OrchestrationCheckpoint.model_validate_json(path.read_text(encoding="utf-8"))
        if checkpoint.batch_id != batch_id:
            logger.warning(f"Checkpoint {path.name} belongs to batch {checkpoint.batch_id}, not {batch_id}")
            return None
        return checkpoint

    async def save(self, checkpoint: OrchestrationCheckpoint) -> None:
        path = self._path(checkpoint.batch_id)
        tmp = path.with_suffix(".json.tmp")
        async with self._lock:
            tmp.write_text(checkpoint.model_dump_json(indent=2), encoding="utf-8")
            tmp.replace(path)

    async def list_active(self) -> list[OrchestrationCheckpoint]:
        active = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                checkpoint = OrchestrationCheckpoint.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable checkpoint {path.name}: {e}")
                continue
            if not checkpoint.phase.terminal:
                active.append(checkpoint)
        return active
