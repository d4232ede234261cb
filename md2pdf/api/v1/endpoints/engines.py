"""Engine introspection endpoints -- status, metrics, forced health checks and alerts."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from md2pdf.api.v1.schemas.common import ErrorResponse
from md2pdf.api.v1.schemas.engines import AlertsResponse, EngineMetricsResponse, EnginesResponse
from md2pdf.dependencies import get_engine_manager, get_engine_monitor
from md2pdf.engines.manager import EngineManager
from md2pdf.monitoring.models import EngineAlert
from md2pdf.monitoring.service import EngineMonitoringService
from md2pdf.utils.exceptions import UnknownEngineError

router = APIRouter()


def _engines_response(manager: EngineManager) -> EnginesResponse:
    return EnginesResponse(
        available=manager.get_available_engines(),
        healthy=manager.get_healthy_engines(),
        statuses=manager.get_engine_status(),
        uptime=manager.uptime,
    )


@router.get(
    "/engines",
    response_model=EnginesResponse,
    summary="List engines",
    description="Registered engines, the healthy subset and the latest health snapshot of each.",
)
async def list_engines(
    manager: EngineManager = Depends(get_engine_manager),
) -> EnginesResponse:
    return _engines_response(manager)


@router.get(
    "/engines/metrics",
    response_model=EngineMetricsResponse,
    summary="Engine metrics",
)
async def engine_metrics(
    manager: EngineManager = Depends(get_engine_manager),
) -> EngineMetricsResponse:
    return EngineMetricsResponse(metrics=manager.get_engine_metrics())


@router.post(
    "/engines/health-check",
    response_model=EnginesResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown engine"}},
    summary="Run health checks now",
    description="Re-check one engine (``engine`` query parameter) or all of them.",
)
async def force_health_check(
    engine: str | None = Query(default=None, description="Engine name; all engines when omitted"),
    manager: EngineManager = Depends(get_engine_manager),
) -> EnginesResponse:
    if engine is not None and engine not in manager.get_available_engines():
        raise UnknownEngineError(engine, manager.get_available_engines())
    await manager.force_health_check(engine)
    return _engines_response(manager)


@router.get(
    "/engines/alerts",
    response_model=AlertsResponse,
    summary="Recent monitoring alerts",
)
async def list_alerts(
    monitor: EngineMonitoringService = Depends(get_engine_monitor),
) -> AlertsResponse:
    return AlertsResponse(
        alerts=monitor.get_recent_alerts(),
        active=monitor.get_active_alert_count(),
        critical=monitor.get_critical_alert_count(),
    )


@router.post(
    "/engines/alerts/{alert_id}/acknowledge",
    response_model=EngineAlert,
    responses={404: {"model": ErrorResponse, "description": "Unknown alert"}},
    summary="Acknowledge an alert",
)
async def acknowledge_alert(
    alert_id: str,
    monitor: EngineMonitoringService = Depends(get_engine_monitor),
) -> EngineAlert:
    return monitor.acknowledge_alert(alert_id)
