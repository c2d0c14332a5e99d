"""Poll message bridge for external queues."""

from typing import Any, Union

from fastapi import APIRouter, Body

from ..services.recovery_manager import recovery_manager

router = APIRouter(prefix="/poller", tags=["poller"])


@router.post("/messages")
async def handle_poll_message(message: Union[str, dict[str, Any]] = Body(...)):
    """Handle one raw queue message (base64 or plain JSON) and report the outcome."""
    outcome = await recovery_manager.poller.handle_message(message)
    return outcome


@router.post("/drain")
async def drain_poll_queue():
    outcomes = await recovery_manager.poll_worker.drain()
    return {"handled": len(outcomes), "outcomes": outcomes}
