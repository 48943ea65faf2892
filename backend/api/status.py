"""
Status API
Scheduler state and manual job triggers.

Triggers run the job synchronously on the request thread and return the
job result, or the skip marker when the same job is already running.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core.scheduler import SchedulerContext, run_monitor, run_scan

from .deps import context_dep

router = APIRouter(prefix="/status", tags=["Scheduler"])


class CrossSectorRequest(BaseModel):
    enabled: bool


@router.get("")
def get_status(ctx: SchedulerContext = Depends(context_dep)):
    return {
        "scheduler": ctx.status(),
        "storage": ctx.storage.get_stats(),
        "notifier_enabled": bool(ctx.notifier is not None and ctx.notifier.enabled),
    }


@router.post("/scan")
def trigger_scan(ctx: SchedulerContext = Depends(context_dep)):
    return run_scan(ctx)


@router.post("/monitor")
def trigger_monitor(ctx: SchedulerContext = Depends(context_dep)):
    return run_monitor(ctx)


@router.post("/cross-sector")
def set_cross_sector(request: CrossSectorRequest, ctx: SchedulerContext = Depends(context_dep)):
    ctx.set_cross_sector(request.enabled)
    return {"cross_sector_enabled": ctx.cross_sector_enabled}
