"""Deterministic primitives the orchestrator is allowed to use.

The orchestrator never reads the clock, generates ids or sleeps on its own.
It goes through a host so that a run can be replayed from its checkpoint and
so tests can drive time explicitly.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone


class OrchestrationHost(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Current UTC time."""
        ...

    @abstractmethod
    def new_id(self) -> str:
        """A fresh correlation id."""
        ...

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend for ``seconds``; the timer primitive."""
        ...


class AsyncioHost(OrchestrationHost):
    """Real-time host backed by the running event loop."""

    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def new_id(self) -> str:
        return str(uuid.uuid4())

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
