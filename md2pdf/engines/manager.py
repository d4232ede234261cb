"""PDF engine manager -- failover, health monitoring and metrics across engines.

The :class:`EngineManager` owns a primary engine plus any configured fallback
engines.  For each :meth:`EngineManager.generate_pdf` call it:

1. Asks the selection strategy for an engine, given the cached health
   snapshots.  No engine means an immediate ``NoHealthyEngineError`` result.
2. Runs up to ``max_retries`` attempts on the selected engine, each bounded
   by ``resource_limits.task_timeout``.
3. After a failed attempt that is not the last, tries exactly one other
   healthy, capable engine before pausing ``retry_delay`` and retrying.
4. Returns the first successful result, or a ``RetriesExhaustedError``
   result carrying the attempt count and the last error seen.

Within one call attempts are strictly sequential.  Concurrent calls run
independent sequences; the manager holds no locks.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any

from pydantic import ValidationError

from md2pdf.engines.base import BaseEngine, EngineSelectionStrategy
from md2pdf.engines.factory import EngineFactory
from md2pdf.engines.models import (
    EngineManagerConfig,
    EngineMetrics,
    EngineOptions,
    EngineResult,
    GenerationContext,
    HealthStatus,
    ResourceUsage,
)
from md2pdf.engines.strategies import AdaptiveSelectionStrategy
from md2pdf.utils.exceptions import (
    ConfigurationError,
    NoHealthyEngineError,
    RetriesExhaustedError,
)
from md2pdf.utils.logging import get_logger


class EngineManager:
    """Orchestrate several interchangeable PDF engines.

    Parameters
    ----------
    config:
        Manager configuration; copied, never mutated in place.
    factory:
        Source of engine instances, looked up by the names in *config*.
    selection_strategy:
        Policy choosing the engine for each job.

    The manager is also an async context manager::

        async with EngineManager(config, factory, strategy) as manager:
            result = await manager.generate_pdf(context, options)
    """

    def __init__(
        self,
        config: EngineManagerConfig,
        factory: EngineFactory,
        selection_strategy: EngineSelectionStrategy,
    ) -> None:
        self.config = config.model_copy(deep=True)
        self.factory = factory
        self.selection_strategy = selection_strategy
        self.logger = get_logger("engines.manager")

        self._engines: dict[str, BaseEngine] = {}
        self._health_statuses: dict[str, HealthStatus] = {}
        self._metrics: dict[str, EngineMetrics] = {}
        self._health_task: asyncio.Task | None = None
        self._started = time.monotonic()

    async def __aenter__(self) -> EngineManager:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.cleanup()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create and initialise the primary and fallback engines.

        A primary failure propagates and aborts startup.  A fallback failure
        is logged and that engine is left out of the registry.
        Calling it again on a running manager is a no-op.
        """
        if self._engines:
            self.logger.debug("engine_manager_already_initialized", engines=self.get_available_engines())
            return

        await self._initialize_engine(self.config.primary_engine)

        for engine_name in self.config.fallback_engines:
            if engine_name in self._engines:
                continue
            try:
                await self._initialize_engine(engine_name)
            except Exception as exc:
                self.logger.warning(
                    "fallback_engine_init_failed",
                    engine=engine_name,
                    error=str(exc),
                )

        await self._perform_health_checks()

        if self.config.health_check_interval > 0:
            self._start_health_monitoring()

        self.logger.info(
            "engine_manager_initialized",
            engines=self.get_available_engines(),
            healthy=self.get_healthy_engines(),
        )

    async def _initialize_engine(self, engine_name: str) -> None:
        engine = await self.factory.create_engine(engine_name)
        try:
            await engine.initialize()
        except Exception as exc:
            self.logger.error("engine_init_failed", engine=engine_name, error=str(exc))
            await self._cleanup_engine(engine_name, engine)
            raise

        self._engines[engine_name] = engine
        self.logger.info("engine_initialized", engine=engine_name, version=engine.version)

    async def cleanup(self) -> None:
        """Stop monitoring, release every engine and empty the registry.

        Never raises; individual engine cleanup errors are logged.
        """
        await self._stop_health_monitoring()

        engines = list(self._engines.items())
        await asyncio.gather(
            *(self._cleanup_engine(name, engine) for name, engine in engines)
        )

        self._engines.clear()
        self._health_statuses.clear()
        self._metrics.clear()
        self.logger.info("engine_manager_cleaned_up", engines=[name for name, _ in engines])

    async def _cleanup_engine(self, engine_name: str, engine: BaseEngine) -> None:
        try:
            await engine.cleanup()
        except Exception as exc:
            self.logger.warning("engine_cleanup_error", engine=engine_name, error=str(exc))

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_pdf(
        self,
        context: GenerationContext,
        options: EngineOptions | None = None,
    ) -> EngineResult:
        """Generate a PDF for *context*, retrying and failing over as configured.

        Always returns an :class:`EngineResult`; failures are reported in it
        rather than raised.
        """
        options = options or EngineOptions()
        config = self.config

        try:
            selected = await self.selection_strategy.select_engine(
                context,
                list(self._engines.values()),
                list(self._health_statuses.values()),
            )
        except Exception as exc:
            self.logger.exception("engine_selection_error")
            return EngineResult.failure(exc)

        if selected is None:
            self.logger.warning("no_healthy_engine", engines=self.get_available_engines())
            return EngineResult.failure(NoHealthyEngineError())

        last_error: str | None = None

        for attempt in range(1, config.max_retries + 1):
            result = await self._attempt(selected, context, options)
            if result.success:
                return result
            last_error = result.error

            if attempt == config.max_retries:
                break

            fallback = await self._select_fallback_engine(selected, context)
            if fallback is not None:
                fallback_result = await self._attempt(fallback, context, options)
                if fallback_result.success:
                    return fallback_result
                last_error = fallback_result.error

            if config.retry_delay > 0:
                await asyncio.sleep(config.retry_delay / 1000)

        error = RetriesExhaustedError(config.max_retries, last_error)
        self.logger.error(
            "pdf_generation_failed",
            engine=selected.name,
            attempts=config.max_retries,
            error=last_error,
        )
        return EngineResult.failure(error)

    async def _attempt(
        self,
        engine: BaseEngine,
        context: GenerationContext,
        options: EngineOptions,
    ) -> EngineResult:
        """Run one generation on *engine* under the per-attempt timeout.

        Timeouts and exceptions become failure results.  On timeout the
        manager stops waiting; whether the engine aborts is up to the engine.
        """
        timeout_ms = self.config.resource_limits.task_timeout
        start = time.perf_counter()
        self.logger.debug("generation_attempt", engine=engine.name)

        try:
            result = await asyncio.wait_for(
                engine.generate_pdf(context, options),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            result = EngineResult(
                success=False,
                error=f"PDF generation timeout after {timeout_ms}ms",
                error_type="TimeoutError",
            )
        except Exception as exc:
            result = EngineResult.failure(exc)

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._record_attempt(engine, result, elapsed_ms)
        return result

    def _record_attempt(self, engine: BaseEngine, result: EngineResult, elapsed_ms: float) -> None:
        if result.success:
            self.logger.info(
                "generation_succeeded",
                engine=engine.name,
                elapsed_ms=round(elapsed_ms, 2),
                output_path=result.output_path,
            )
        else:
            self.logger.warning(
                "generation_attempt_failed",
                engine=engine.name,
                elapsed_ms=round(elapsed_ms, 2),
                error=result.error,
            )

        if isinstance(self.selection_strategy, AdaptiveSelectionStrategy):
            self.selection_strategy.record_performance(engine.name, result.success, elapsed_ms)

        if self.config.enable_metrics:
            self._collect_metrics(engine.name, engine)

    async def _select_fallback_engine(
        self,
        current: BaseEngine,
        context: GenerationContext,
    ) -> BaseEngine | None:
        """First other registered engine that is healthy and can handle *context*."""
        for name, engine in self._engines.items():
            if engine is current or engine.name == current.name:
                continue
            status = self._health_statuses.get(name)
            if status is None or not status.is_healthy:
                continue
            if await engine.can_handle(context):
                return engine
        return None

    # ------------------------------------------------------------------
    # Health monitoring
    # ------------------------------------------------------------------

    def _start_health_monitoring(self) -> None:
        if self.is_monitoring:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("health_monitoring_not_started", reason="no running event loop")
            return

        interval = self.config.health_check_interval / 1000
        self._health_task = loop.create_task(
            self._health_monitor_loop(interval),
            name="md2pdf-engine-health-monitor",
        )
        self.logger.debug("health_monitoring_started", interval_ms=self.config.health_check_interval)

    async def _stop_health_monitoring(self) -> None:
        task, self._health_task = self._health_task, None
        if task is None or task.done():
            return
        task.cancel()
        if task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _health_monitor_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self._perform_health_checks()
            except Exception:
                self.logger.exception("health_check_pass_error")

    async def _perform_health_checks(self) -> None:
        await asyncio.gather(
            *(self._check_engine(name, engine) for name, engine in list(self._engines.items()))
        )

    async def _check_engine(self, engine_name: str, engine: BaseEngine) -> None:
        """Refresh one engine's health snapshot; errors become an unhealthy status."""
        try:
            status = await engine.health_check()
        except Exception as exc:
            self.logger.warning("engine_health_check_failed", engine=engine_name, error=str(exc))
            status = HealthStatus(
                is_healthy=False,
                engine_name=engine_name,
                errors=[f"Health check failed: {exc}"],
            )

        # The engine may have been removed by cleanup() while we awaited.
        if self._engines.get(engine_name) is not engine:
            return

        self._health_statuses[engine_name] = status
        if not status.is_healthy:
            self.logger.warning("engine_unhealthy", engine=engine_name, errors=status.errors)

        if self.config.enable_metrics:
            await self._check_resource_usage(engine_name, engine)
            self._collect_metrics(engine_name, engine)

    async def _check_resource_usage(self, engine_name: str, engine: BaseEngine) -> None:
        try:
            usage = await engine.get_resource_usage()
        except Exception as exc:
            self.logger.warning("engine_resource_usage_error", engine=engine_name, error=str(exc))
            return

        limit = self.config.resource_limits.max_memory_usage
        if usage.memory_usage > limit:
            self.logger.warning(
                "engine_memory_limit_exceeded",
                engine=engine_name,
                memory_usage=usage.memory_usage,
                limit=limit,
            )

    def _collect_metrics(self, engine_name: str, engine: BaseEngine) -> None:
        try:
            metrics = engine.get_metrics()
        except Exception as exc:
            self.logger.warning("engine_metrics_error", engine=engine_name, error=str(exc))
            return
        if metrics is not None and engine_name in self._engines:
            self._metrics[engine_name] = metrics.model_copy(deep=True)

    async def force_health_check(self, engine_name: str | None = None) -> None:
        """Re-check one engine (by name) or all of them.  Never raises."""
        if engine_name is None:
            await self._perform_health_checks()
            return

        engine = self._engines.get(engine_name)
        if engine is None:
            self.logger.warning("health_check_unknown_engine", engine=engine_name)
            return
        await self._check_engine(engine_name, engine)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_engine_status(self) -> dict[str, HealthStatus]:
        return {name: s.model_copy(deep=True) for name, s in self._health_statuses.items()}

    def get_engine_metrics(self) -> dict[str, EngineMetrics]:
        return {name: m.model_copy(deep=True) for name, m in self._metrics.items()}

    def get_available_engines(self) -> list[str]:
        return list(self._engines)

    def get_healthy_engines(self) -> list[str]:
        return [name for name, s in self._health_statuses.items() if s.is_healthy]

    async def get_resource_usage(self, engine_name: str) -> ResourceUsage | None:
        """Current resource usage of one engine, or ``None`` if unknown or failing."""
        engine = self._engines.get(engine_name)
        if engine is None:
            return None
        try:
            return await engine.get_resource_usage()
        except Exception as exc:
            self.logger.warning("engine_resource_usage_error", engine=engine_name, error=str(exc))
            return None

    @property
    def uptime(self) -> float:
        """Milliseconds since this manager was constructed."""
        return (time.monotonic() - self._started) * 1000

    @property
    def is_monitoring(self) -> bool:
        return self._health_task is not None and not self._health_task.done()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def update_config(self, **changes: Any) -> None:
        """Merge *changes* into the live configuration.

        Changing ``health_check_interval`` restarts the periodic health check
        (or leaves it stopped when the new value is not positive).  Invalid
        values raise :class:`ConfigurationError` and leave the config as is.
        """
        try:
            new_config = self.config.merged(changes)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid engine manager config: {exc}") from exc

        self.config = new_config
        self.logger.info("engine_manager_config_updated", fields=sorted(changes))

        if "health_check_interval" in changes:
            await self._stop_health_monitoring()
            if self.config.health_check_interval > 0:
                self._start_health_monitoring()
