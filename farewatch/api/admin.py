from fastapi import APIRouter, Depends, HTTPException

from farewatch.models.check_job import ManualCheck, payload_for
from farewatch.scheduler import get_monitor, get_scheduler_status
from farewatch.schemas import TriggerRequest, JobQueuedResponse, JobResponse
from farewatch.services.monitor import RecheckMonitor

router = APIRouter()


@router.get("/api/admin/scheduler/status")
async def scheduler_status(monitor: RecheckMonitor = Depends(get_monitor)):
    """Scheduler flags, in-flight checks, cooldowns and queue counts."""
    return get_scheduler_status(monitor)


@router.post("/api/admin/scheduler/enable")
async def enable_scheduler(monitor: RecheckMonitor = Depends(get_monitor)):
    monitor.set_enabled(True)
    return {"success": True, "enabled": True}


@router.post("/api/admin/scheduler/disable")
async def disable_scheduler(monitor: RecheckMonitor = Depends(get_monitor)):
    """Stop automatic ticks. Checks already running are left to finish."""
    monitor.set_enabled(False)
    return {"success": True, "enabled": False}


@router.post("/api/admin/triggers/enable")
async def enable_triggers(monitor: RecheckMonitor = Depends(get_monitor)):
    monitor.set_manual_triggers_enabled(True)
    return {"success": True, "manual_triggers_enabled": True}


@router.post("/api/admin/triggers/disable")
async def disable_triggers(monitor: RecheckMonitor = Depends(get_monitor)):
    monitor.set_manual_triggers_enabled(False)
    return {"success": True, "manual_triggers_enabled": False}


@router.post("/api/admin/trigger", response_model=JobQueuedResponse, status_code=202)
async def queue_trigger(request: TriggerRequest, monitor: RecheckMonitor = Depends(get_monitor)):
    """Queue a manual_check or user_trigger job.

    Rejections (triggers disabled, user cooldown) are turned into 403/429
    by the app-level handler.
    """
    try:
        payload = payload_for(request.type, trip_id=request.trip_id, user_email=request.user_email)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if isinstance(payload, ManualCheck) and not monitor.trips.get(payload.trip_id):
        raise HTTPException(status_code=404, detail="Trip not found")

    job_id = monitor.queue_manual_job(payload)
    return JobQueuedResponse(job_id=job_id)


@router.post("/api/admin/maintenance")
async def run_maintenance(monitor: RecheckMonitor = Depends(get_monitor)):
    """Run the daily cleanup now."""
    return await monitor.run_maintenance()


@router.get("/api/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: int, monitor: RecheckMonitor = Depends(get_monitor)):
    job = monitor.jobs.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
