from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from farewatch.database import get_db
from farewatch.scheduler import get_monitor
from farewatch.services.monitor import RecheckMonitor

router = APIRouter()


@router.get("/health")
async def health_check(
    db: Session = Depends(get_db),
    monitor: RecheckMonitor = Depends(get_monitor),
):
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    return {
        "status": "ok" if db_status == "healthy" else "degraded",
        "database": db_status,
        "scheduler": "running" if monitor.is_running and monitor.enabled else "stopped",
        "active_checks": monitor.dispatcher.in_flight_count,
    }
