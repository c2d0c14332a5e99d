"""Collaborator clients."""

from .base import (
    Backend,
    CandidateInventory,
    CreationClient,
    LocationResolver,
    TelemetrySink,
    WorkQueue,
)
from .registry import available_backends, create_backend, register_backend
from .memory import (
    InMemoryCreationClient,
    InMemoryInventory,
    InMemoryLocationResolver,
    InMemoryWorkQueue,
    LoggingTelemetrySink,
)

__all__ = [
    "Backend",
    "CandidateInventory",
    "CreationClient",
    "LocationResolver",
    "TelemetrySink",
    "WorkQueue",
    "available_backends",
    "create_backend",
    "register_backend",
    "InMemoryCreationClient",
    "InMemoryInventory",
    "InMemoryLocationResolver",
    "InMemoryWorkQueue",
    "LoggingTelemetrySink",
]
