"""Recovery API endpoints."""

from typing import Any, Union

from fastapi import APIRouter, Body, HTTPException

from ..errors import ClassifiedError
from ..models.recovery import RecoveryRequest
from ..services.recovery_manager import recovery_manager

router = APIRouter(prefix="/recovery", tags=["recovery"])


@router.post("/start", status_code=202)
async def start_recovery(request: RecoveryRequest):
    batch_id = await recovery_manager.submit(request)
    job = recovery_manager.get_job(batch_id)
    return {"batch_id": batch_id, "status": job.status}


@router.post("/messages")
async def handle_recovery_message(message: Union[str, dict[str, Any]] = Body(...)):
    """Start a recovery from a raw queue message (base64 or plain JSON).

    Invalid messages are reported as not accepted with a 200 so the queue
    trigger consumes them.
    """
    try:
        batch_id = await recovery_manager.submit_message(message)
    except ClassifiedError as e:
        if e.retryable or e.is_fatal:
            raise
        return {"accepted": False, "error": e.message}
    job = recovery_manager.get_job(batch_id)
    return {"accepted": True, "batch_id": batch_id, "status": job.status}


@router.get("/jobs")
async def list_recovery_jobs():
    return [
        {
            "batch_id": job.id,
            "status": job.status,
            "created_at": job.created_at,
            "completed_at": job.completed_at,
            "message": job.progress.message,
        }
        for job in recovery_manager.list_jobs()
    ]


@router.get("/jobs/{batch_id}")
async def get_recovery_job(batch_id: str):
    job = recovery_manager.get_job(batch_id)
    if not job:
        raise HTTPException(status_code=404, detail="Recovery job not found")
    return job
