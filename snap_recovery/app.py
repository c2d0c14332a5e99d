"""FastAPI application factory."""

import logging

from fastapi import FastAPI

from .config import settings
from .api.router import api_router
from .services.recovery_manager import recovery_manager

# Configure logging for our modules
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")
if settings.debug:
    logging.getLogger("snap_recovery").setLevel(logging.DEBUG)

logger = logging.getLogger(__name__)


async def _on_startup() -> None:
    resumed = await recovery_manager.resume_pending()
    if resumed:
        logger.info(f"Resumed {len(resumed)} unfinished recoveries")
    if settings.poll_worker_enabled:
        recovery_manager.poll_worker.start()


async def _on_shutdown() -> None:
    await recovery_manager.poll_worker.stop()
    await recovery_manager.telemetry.flush()


def create_app() -> FastAPI:
    app = FastAPI(
        title="snap-recovery",
        version="0.1.0",
        description="Batch VM recovery from point-in-time snapshots",
    )

    app.include_router(api_router, prefix="/api")
    app.add_event_handler("startup", _on_startup)
    app.add_event_handler("shutdown", _on_shutdown)

    return app
