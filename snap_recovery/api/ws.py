"""WebSocket endpoint for live progress updates."""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..services.recovery_manager import recovery_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


class ConnectionManager:
    def __init__(self):
        self.active: list[WebSocket] = []

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.active.append(ws)

    def disconnect(self, ws: WebSocket):
        if ws in self.active:
            self.active.remove(ws)

    async def broadcast(self, message: dict):
        for ws in list(self.active):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping websocket after send failure: {e}")
                self.disconnect(ws)


manager = ConnectionManager()


async def _recovery_cb(job):
    await manager.broadcast({
        "type": "recovery_progress",
        "batch_id": job.id,
        "status": job.status.value,
        "progress": job.progress.model_dump(),
        "error": job.error,
        "error_kind": job.error_kind,
    })


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await manager.connect(ws)
    subscribed: list[str] = []

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue

            if msg.get("action") == "subscribe_recovery":
                batch_id = msg.get("batch_id") or msg.get("job_id")
                if batch_id and batch_id not in subscribed:
                    recovery_manager.add_progress_listener(batch_id, _recovery_cb)
                    subscribed.append(batch_id)
                    await ws.send_json({"type": "subscribed", "batch_id": batch_id})

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(ws)
        for batch_id in subscribed:
            recovery_manager.remove_progress_listener(batch_id, _recovery_cb)
