from md2pdf.monitoring.models import (
    AlertSeverity,
    AlertThresholds,
    AlertType,
    EngineAlert,
    MetricsSnapshot,
    MonitorConfig,
)
from md2pdf.monitoring.service import EngineMonitoringService

__all__ = [
    "AlertSeverity",
    "AlertThresholds",
    "AlertType",
    "EngineAlert",
    "EngineMonitoringService",
    "MetricsSnapshot",
    "MonitorConfig",
]
