"""System info API endpoints."""

from fastapi import APIRouter

from ..clients import available_backends
from ..services.recovery_manager import recovery_manager

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/info")
async def get_system_info():
    settings = recovery_manager.settings
    return {
        "backend": recovery_manager.backend.name,
        "available_backends": available_backends(),
        "checkpoint_store": type(recovery_manager.store).__name__,
        "poll_worker_running": recovery_manager.poll_worker.running,
        "settings": settings.model_dump(mode="json", exclude={"host", "port"}),
    }
