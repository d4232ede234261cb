"""Periodic monitoring of an :class:`EngineManager`: alerts and metric history."""

from __future__ import annotations

import asyncio
import contextlib
import csv
import io
import json
from datetime import datetime, timedelta
from typing import Any

from md2pdf.engines.manager import EngineManager
from md2pdf.engines.models import HealthStatus, utcnow
from md2pdf.monitoring.models import (
    AlertSeverity,
    AlertType,
    EngineAlert,
    MetricsSnapshot,
    MonitorConfig,
    SnapshotPerformance,
    SnapshotResourceUsage,
)
from md2pdf.utils.exceptions import AlertNotFoundError, ConfigurationError
from md2pdf.utils.logging import get_logger

CSV_HEADERS = [
    "timestamp",
    "engine_name",
    "is_healthy",
    "memory_usage",
    "active_tasks",
    "total_requests",
    "successful_requests",
    "failed_requests",
    "average_response_time",
    "error_count",
]


class EngineMonitoringService:
    """Watch engine health and performance, raise alerts and keep a metric history.

    Parameters
    ----------
    config:
        Monitoring intervals, thresholds and retention.
    manager:
        The engine manager whose cached statuses and metrics are read.  The
        service never triggers health checks itself.

    Two asyncio tasks run while started: one evaluates health snapshots
    against the alert thresholds, the other records a
    :class:`MetricsSnapshot` per engine and prunes expired history.
    """

    def __init__(self, config: MonitorConfig, manager: EngineManager) -> None:
        self.config = config
        self.manager = manager
        self.logger = get_logger("monitoring.service")

        self._history: dict[str, list[MetricsSnapshot]] = {}
        self._alerts: dict[str, EngineAlert] = {}
        self._alert_counter = 0
        self._unhealthy_streaks: dict[str, int] = {}
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        if not self.config.enabled:
            self.logger.info("engine_monitoring_disabled")
            return

        await self.perform_health_checks()
        await self.collect_performance_metrics()

        self._tasks = [
            asyncio.create_task(
                self._periodic(self.config.health_check_interval, self.perform_health_checks),
                name="md2pdf-monitor-health",
            ),
            asyncio.create_task(
                self._periodic(self.config.performance_metrics_interval, self.collect_performance_metrics),
                name="md2pdf-monitor-metrics",
            ),
        ]
        self._running = True
        self.logger.info(
            "engine_monitoring_started",
            health_interval_ms=self.config.health_check_interval,
            metrics_interval_ms=self.config.performance_metrics_interval,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._running = False
        self.logger.info("engine_monitoring_stopped")

    async def _periodic(self, interval_ms: int, job) -> None:
        while True:
            await asyncio.sleep(interval_ms / 1000)
            await job()

    # ------------------------------------------------------------------
    # Health evaluation
    # ------------------------------------------------------------------

    async def perform_health_checks(self) -> None:
        """Compare every cached health snapshot with the alert thresholds."""
        try:
            for engine_name, status in self.manager.get_engine_status().items():
                await self._evaluate(engine_name, status)
        except Exception:
            self.logger.exception("engine_monitoring_health_error")

    async def _evaluate(self, engine_name: str, status: HealthStatus) -> None:
        thresholds = self.config.alert_thresholds

        if status.is_healthy:
            self._unhealthy_streaks[engine_name] = 0
        else:
            streak = self._unhealthy_streaks.get(engine_name, 0) + 1
            self._unhealthy_streaks[engine_name] = streak
            await self._create_alert(
                engine_name,
                AlertType.HEALTH,
                AlertSeverity.HIGH,
                f"Engine {engine_name} is unhealthy: {', '.join(status.errors)}",
                {"errors": list(status.errors), "last_check": status.last_check.isoformat()},
            )
            if streak >= thresholds.consecutive_failures:
                await self._create_alert(
                    engine_name,
                    AlertType.FAILURE,
                    AlertSeverity.CRITICAL,
                    f"Engine {engine_name} failed {thresholds.consecutive_failures} consecutive health checks",
                    {"consecutive_failures": streak},
                )

        perf = status.performance
        if perf is None:
            return

        failure_rate = (1 - perf.success_rate) * 100
        if failure_rate > thresholds.failure_rate:
            await self._create_alert(
                engine_name,
                AlertType.PERFORMANCE,
                AlertSeverity.CRITICAL if failure_rate > 50 else AlertSeverity.HIGH,
                f"High failure rate for {engine_name}: {failure_rate:.1f}%",
                {"failure_rate": failure_rate, "threshold": thresholds.failure_rate},
            )

        if perf.average_generation_time > thresholds.average_response_time:
            await self._create_alert(
                engine_name,
                AlertType.PERFORMANCE,
                AlertSeverity.MEDIUM,
                f"Slow response time for {engine_name}: {perf.average_generation_time:.0f}ms",
                {
                    "average_response_time": perf.average_generation_time,
                    "threshold": thresholds.average_response_time,
                },
            )

        if perf.memory_usage > thresholds.memory_usage:
            await self._create_alert(
                engine_name,
                AlertType.RESOURCE,
                AlertSeverity.MEDIUM,
                f"High memory usage for {engine_name}: {perf.memory_usage / 1024 / 1024:.1f}MB",
                {"memory_usage": perf.memory_usage, "threshold": thresholds.memory_usage},
            )

    async def _create_alert(
        self,
        engine_name: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> EngineAlert | None:
        """Store a new alert unless an identical unresolved one already exists."""
        for alert in self._alerts.values():
            if (
                not alert.resolved
                and alert.engine_name == engine_name
                and alert.type == alert_type
                and alert.message == message
            ):
                return None

        self._alert_counter += 1
        alert = EngineAlert(
            id=f"alert_{self._alert_counter}",
            engine_name=engine_name,
            type=alert_type,
            severity=severity,
            message=message,
            metadata=metadata or {},
        )
        self._alerts[alert.id] = alert
        self.logger.warning(
            "engine_alert",
            alert_id=alert.id,
            engine=engine_name,
            type=alert_type.value,
            severity=severity.value,
            message=message,
        )

        if self.config.enable_alerting:
            await self.send_external_alert(alert)
        return alert

    async def send_external_alert(self, alert: EngineAlert) -> None:
        """Hook for delivering alerts outside the process; logs by default."""
        self.logger.info("external_alert", alert_id=alert.id, message=alert.message)

    # ------------------------------------------------------------------
    # Metrics history
    # ------------------------------------------------------------------

    async def collect_performance_metrics(self) -> None:
        """Record one snapshot per engine and drop anything past retention."""
        try:
            statuses = self.manager.get_engine_status()
            metrics = self.manager.get_engine_metrics()
            now = utcnow()

            for engine_name, status in statuses.items():
                engine_metrics = metrics.get(engine_name)
                usage = await self.manager.get_resource_usage(engine_name)
                snapshot = MetricsSnapshot(
                    engine_name=engine_name,
                    timestamp=now,
                    is_healthy=status.is_healthy,
                    resource_usage=SnapshotResourceUsage(
                        memory_usage=status.performance.memory_usage if status.performance else 0,
                        active_tasks=usage.active_tasks if usage else 0,
                    ),
                    performance=SnapshotPerformance(
                        total_requests=engine_metrics.total_tasks if engine_metrics else 0,
                        successful_requests=engine_metrics.successful_tasks if engine_metrics else 0,
                        failed_requests=engine_metrics.failed_tasks if engine_metrics else 0,
                        average_response_time=engine_metrics.average_time if engine_metrics else 0.0,
                    ),
                    errors=list(status.errors),
                )
                self._history.setdefault(engine_name, []).append(snapshot)

            self.prune()
        except Exception:
            self.logger.exception("engine_monitoring_metrics_error")

    def prune(self) -> None:
        """Drop snapshots and resolved alerts older than the retention period."""
        cutoff = utcnow() - timedelta(milliseconds=self.config.retention_period)
        for engine_name, history in self._history.items():
            self._history[engine_name] = [s for s in history if s.timestamp > cutoff]
        for alert_id in [a.id for a in self._alerts.values() if a.resolved and a.timestamp < cutoff]:
            del self._alerts[alert_id]

    def get_metrics_snapshot(self, engine_name: str) -> MetricsSnapshot | None:
        history = self._history.get(engine_name)
        return history[-1].model_copy(deep=True) if history else None

    def get_all_metrics_snapshots(self) -> dict[str, MetricsSnapshot]:
        return {
            name: history[-1].model_copy(deep=True)
            for name, history in self._history.items()
            if history
        }

    def export_metrics(self, format: str = "json", period: int = 60 * 60 * 1000) -> str:
        """Serialise the snapshots of the last *period* milliseconds.

        ``format`` is ``"json"`` (indented array) or ``"csv"`` (header plus
        one row per snapshot; empty string when there is nothing to export).
        """
        since = utcnow() - timedelta(milliseconds=period)
        snapshots = [
            s for history in self._history.values() for s in history if s.timestamp > since
        ]

        if format == "json":
            return json.dumps([s.model_dump(mode="json") for s in snapshots], indent=2)
        if format == "csv":
            return self._to_csv(snapshots)
        raise ConfigurationError(f"Unsupported export format: {format}. Supported: json, csv")

    @staticmethod
    def _to_csv(snapshots: list[MetricsSnapshot]) -> str:
        if not snapshots:
            return ""
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for s in snapshots:
            writer.writerow([
                s.timestamp.isoformat(),
                s.engine_name,
                str(s.is_healthy).lower(),
                s.resource_usage.memory_usage,
                s.resource_usage.active_tasks,
                s.performance.total_requests,
                s.performance.successful_requests,
                s.performance.failed_requests,
                s.performance.average_response_time,
                len(s.errors),
            ])
        return buf.getvalue().rstrip("\n")

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def get_recent_alerts(self, since: datetime | None = None) -> list[EngineAlert]:
        """Alerts newer than *since* (default: the last 24 hours), newest first."""
        cutoff = since or utcnow() - timedelta(hours=24)
        recent = [a for a in self._alerts.values() if a.timestamp > cutoff]
        recent.sort(key=lambda a: a.timestamp, reverse=True)
        return [a.model_copy(deep=True) for a in recent]

    def acknowledge_alert(self, alert_id: str) -> EngineAlert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        alert.resolved = True
        alert.resolved_at = utcnow()
        self.logger.info("engine_alert_acknowledged", alert_id=alert_id, engine=alert.engine_name)
        return alert.model_copy(deep=True)

    def get_engine_health_summary(self) -> dict[str, dict[str, Any]]:
        return {
            name: {"healthy": status.is_healthy, "last_check": status.last_check}
            for name, status in self.manager.get_engine_status().items()
        }

    def get_active_alert_count(self) -> int:
        return sum(1 for a in self._alerts.values() if not a.resolved)

    def get_critical_alert_count(self) -> int:
        return sum(
            1 for a in self._alerts.values()
            if not a.resolved and a.severity == AlertSeverity.CRITICAL
        )
