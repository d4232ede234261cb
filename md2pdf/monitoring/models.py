"""Monitoring configuration, alerts and per-engine metric snapshots."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from md2pdf.engines.models import utcnow


class AlertType(str, Enum):
    HEALTH = "health"
    PERFORMANCE = "performance"
    RESOURCE = "resource"
    FAILURE = "failure"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertThresholds(BaseModel):
    failure_rate: float = Field(default=10.0, ge=0, le=100)  # percent
    average_response_time: float = 30_000  # ms
    memory_usage: int = 512 * 1024 * 1024  # bytes
    consecutive_failures: int = Field(default=3, ge=1)


class MonitorConfig(BaseModel):
    """Settings for :class:`~md2pdf.monitoring.service.EngineMonitoringService`.

    Intervals and the retention period are in milliseconds.
    """

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    health_check_interval: int = Field(default=30_000, gt=0)
    performance_metrics_interval: int = Field(default=60_000, gt=0)
    alert_thresholds: AlertThresholds = AlertThresholds()
    retention_period: int = Field(default=24 * 60 * 60 * 1000, gt=0)
    enable_alerting: bool = False


class EngineAlert(BaseModel):
    id: str
    engine_name: str
    type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    resolved: bool = False
    resolved_at: datetime | None = None
    metadata: dict[str, Any] = {}


class SnapshotResourceUsage(BaseModel):
    memory_usage: int = 0
    active_tasks: int = 0


class SnapshotPerformance(BaseModel):
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0  # ms


class MetricsSnapshot(BaseModel):
    engine_name: str
    timestamp: datetime = Field(default_factory=utcnow)
    is_healthy: bool
    resource_usage: SnapshotResourceUsage = SnapshotResourceUsage()
    performance: SnapshotPerformance = SnapshotPerformance()
    errors: list[str] = []
