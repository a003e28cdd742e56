"""Health, metrics, log and blocklist endpoints.

Health is public; everything else requires the admin token outside
development.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from edge.app.exceptions import MonitoringNotInitializedError
from edge.app.middleware.auth import require_admin
from edge.app.middleware.rate_limit import IPBlocklist
from edge.app.services.monitoring import Monitoring, OverallStatus

router = APIRouter(prefix="/api")

MAX_INTROSPECTION_COUNT = 100


def get_app_monitoring(request: Request) -> Monitoring:
    """Monitoring context of the serving application."""
    monitoring = getattr(request.app.state, "monitoring", None)
    if monitoring is None:
        raise MonitoringNotInitializedError()
    return monitoring


def get_blocklist(request: Request) -> IPBlocklist:
    blocklist = getattr(request.app.state, "blocklist", None)
    if blocklist is None:
        raise HTTPException(status_code=404, detail="IP blocking is not enabled")
    return blocklist


MonitoringDep = Annotated[Monitoring, Depends(get_app_monitoring)]
BlocklistDep = Annotated[IPBlocklist, Depends(get_blocklist)]


class BlockRequest(BaseModel):
    ip: str = Field(min_length=1, max_length=256)
    duration_seconds: Optional[float] = Field(default=None, gt=0)


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@router.get("/health")
async def health(monitoring: MonitoringDep) -> JSONResponse:
    """Aggregate health; 503 only when a check fails."""
    status = await monitoring.health.run()
    http_status = 503 if status.status == OverallStatus.UNHEALTHY else 200
    return JSONResponse(status_code=http_status, content=status.to_dict())


@router.get("/metrics", response_model=None)
async def metrics(
    monitoring: MonitoringDep,
    format: Literal["json", "prometheus"] = "json",
    admin=Depends(require_admin),
) -> dict[str, Any] | PlainTextResponse:
    """Metrics summary as JSON, or Prometheus text with ?format=prometheus."""
    if format == "prometheus":
        return PlainTextResponse(
            content=monitoring.metrics.get_prometheus_metrics(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )
    return monitoring.metrics.get_summary()


@router.get("/logs")
async def recent_logs(
    monitoring: MonitoringDep,
    count: int = Query(default=50, ge=1),
    admin=Depends(require_admin),
) -> dict[str, Any]:
    entries = monitoring.logger.get_recent_logs(min(count, MAX_INTROSPECTION_COUNT))
    return {"logs": [entry.to_dict() for entry in entries]}


@router.get("/errors")
async def recent_errors(
    monitoring: MonitoringDep,
    count: int = Query(default=20, ge=1),
    admin=Depends(require_admin),
) -> dict[str, Any]:
    return {"errors": monitoring.error_tracker.get_recent_errors(min(count, MAX_INTROSPECTION_COUNT))}


@router.get("/admin/blocklist")
async def list_blocked(blocklist: BlocklistDep, admin=Depends(require_admin)) -> dict[str, Any]:
    return {
        "blocked": [
            {"ip": ip, "blocked_until": _iso(until)}
            for ip, until in sorted(blocklist.blocked().items())
        ]
    }


@router.post("/admin/blocklist", status_code=201)
async def block_ip(
    body: BlockRequest,
    blocklist: BlocklistDep,
    monitoring: MonitoringDep,
    admin=Depends(require_admin),
) -> dict[str, Any]:
    until = blocklist.block(body.ip, body.duration_seconds)
    monitoring.logger.warn("IP blocked by admin", {"ip": body.ip, "blocked_until": _iso(until)})
    return {"ip": body.ip, "blocked_until": _iso(until)}


@router.delete("/admin/blocklist/{ip}")
async def unblock_ip(
    ip: str,
    blocklist: BlocklistDep,
    monitoring: MonitoringDep,
    admin=Depends(require_admin),
) -> dict[str, Any]:
    if not blocklist.unblock(ip):
        raise HTTPException(status_code=404, detail=f"{ip} is not blocked")
    monitoring.logger.info("IP unblocked by admin", {"ip": ip})
    return {"ip": ip, "unblocked": True}
