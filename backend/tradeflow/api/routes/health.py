from fastapi import APIRouter

from tradeflow.config import settings
from tradeflow.core.observability import uptime_seconds
from tradeflow.core.timeutil import utc_now

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Healthcheck")
def healthcheck():
    """Liveness check. Keep payload stable for monitoring systems."""
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "time": utc_now().isoformat(timespec="seconds") + "Z",
        "uptime_seconds": round(uptime_seconds(), 2),
        "version": getattr(settings, "build_version", None),
    }
