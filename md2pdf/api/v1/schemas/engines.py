"""Response schemas for engine introspection endpoints."""

from pydantic import BaseModel

from md2pdf.engines.models import EngineMetrics, HealthStatus
from md2pdf.monitoring.models import EngineAlert


class EnginesResponse(BaseModel):
    available: list[str]
    healthy: list[str]
    statuses: dict[str, HealthStatus]
    uptime: float  # ms


class EngineMetricsResponse(BaseModel):
    metrics: dict[str, EngineMetrics]


class AlertsResponse(BaseModel):
    alerts: list[EngineAlert]
    active: int
    critical: int
