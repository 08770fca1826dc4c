"""
FastVerify Booth - Sync Router

Manual "sync now", connectivity notifications from the UI shell, and the
status the UI polls (pending count, last successful sync).
"""

from typing import Optional

from fastapi import APIRouter, Depends

from fastverify.dependencies import get_scheduler, get_sync_engine
from fastverify.schemas.sync import ConnectivityUpdate, SyncReport, SyncStatusSnapshot
from fastverify.services.scheduler import SyncScheduler
from fastverify.services.sync_engine import SyncEngine

router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post("/trigger", response_model=SyncReport)
async def trigger_sync(scheduler: SyncScheduler = Depends(get_scheduler)):
    return await scheduler.force_sync()


@router.post("/connectivity", response_model=Optional[SyncReport])
async def connectivity_changed(
    update: ConnectivityUpdate,
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    return await scheduler.connectivity_changed(update.online)


@router.get("/status", response_model=SyncStatusSnapshot)
async def sync_status(engine: SyncEngine = Depends(get_sync_engine)):
    return await engine.status()
