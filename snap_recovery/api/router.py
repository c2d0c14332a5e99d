"""Aggregate all API sub-routers."""

from fastapi import APIRouter

from . import system, recovery, poller, ws

api_router = APIRouter()

api_router.include_router(system.router)
api_router.include_router(recovery.router)
api_router.include_router(poller.router)
api_router.include_router(ws.router)
