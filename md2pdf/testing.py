"""In-memory engine doubles for exercising the manager and strategies without a browser."""

from __future__ import annotations

import asyncio
from typing import Any

from md2pdf.engines.base import BaseEngine
from md2pdf.engines.factory import EngineFactory
from md2pdf.engines.metrics import EngineMetricsRecorder
from md2pdf.engines.models import (
    EngineCapabilities,
    EngineMetrics,
    EngineOptions,
    EngineResult,
    GenerationContext,
    HealthStatus,
    PerformanceSnapshot,
    ResourceUsage,
    ResultMetadata,
)


class MockEngine(BaseEngine):
    """Configurable fake engine.

    Parameters
    ----------
    name:
        Engine name reported everywhere.
    should_fail_init:
        ``initialize`` raises.
    should_throw_on_health_check:
        ``health_check`` raises instead of returning a status.
    should_fail_generation:
        ``generate_pdf`` returns a failure result.
    should_throw_on_generation:
        ``generate_pdf`` raises.
    healthy:
        Value of ``is_healthy`` in health snapshots.
    can_handle_result:
        Value returned by ``can_handle``.
    generation_delay:
        Seconds to sleep inside ``generate_pdf``.
    performance:
        Performance block attached to health snapshots.
    track_metrics:
        When false, ``get_metrics`` returns ``None``.
    """

    def __init__(
        self,
        name: str = "mock",
        *,
        should_fail_init: bool = False,
        should_throw_on_health_check: bool = False,
        should_fail_generation: bool = False,
        should_throw_on_generation: bool = False,
        healthy: bool = True,
        can_handle_result: bool = True,
        generation_delay: float = 0.0,
        capabilities: EngineCapabilities | None = None,
        performance: PerformanceSnapshot | None = None,
        memory_usage: int = 0,
        track_metrics: bool = True,
        version: str = "1.0.0-mock",
    ) -> None:
        self.name = name
        self.version = version
        self.capabilities = capabilities or EngineCapabilities()
        self.should_fail_init = should_fail_init
        self.should_throw_on_health_check = should_throw_on_health_check
        self.should_fail_generation = should_fail_generation
        self.should_throw_on_generation = should_throw_on_generation
        self.healthy = healthy
        self.can_handle_result = can_handle_result
        self.generation_delay = generation_delay
        self.performance = performance
        self.memory_usage = memory_usage
        self.track_metrics = track_metrics

        self.initialized = False
        self.init_calls = 0
        self.generate_calls = 0
        self.health_check_calls = 0
        self.can_handle_calls = 0
        self.cleanup_calls = 0
        self._recorder = EngineMetricsRecorder(name)

    async def initialize(self) -> None:
        self.init_calls += 1
        if self.should_fail_init:
            raise RuntimeError(f"{self.name} initialization failed")
        self.initialized = True

    async def generate_pdf(
        self,
        context: GenerationContext,
        options: EngineOptions,
    ) -> EngineResult:
        self.generate_calls += 1
        self._recorder.record_start()
        if self.generation_delay:
            await asyncio.sleep(self.generation_delay)

        if self.should_throw_on_generation:
            self._recorder.record_failure("generation raised", context)
            raise RuntimeError(f"{self.name} generation raised")
        if self.should_fail_generation:
            self._recorder.record_failure("generation failed", context)
            return EngineResult(success=False, error=f"{self.name} generation failed")

        self._recorder.record_success(10.0)
        return EngineResult(
            success=True,
            output_path=context.output_path,
            metadata=ResultMetadata(
                pages=1,
                file_size=1024,
                generation_time=10.0,
                engine_used=self.name,
            ),
        )

    async def health_check(self) -> HealthStatus:
        self.health_check_calls += 1
        if self.should_throw_on_health_check:
            raise RuntimeError(f"{self.name} health check exploded")
        return HealthStatus(
            is_healthy=self.healthy,
            engine_name=self.name,
            version=self.version,
            errors=[] if self.healthy else [f"{self.name} is unhealthy"],
            performance=self.performance,
        )

    async def get_resource_usage(self) -> ResourceUsage:
        return ResourceUsage(memory_usage=self.memory_usage)

    async def cleanup(self) -> None:
        self.cleanup_calls += 1
        self.initialized = False

    async def can_handle(self, context: GenerationContext) -> bool:
        self.can_handle_calls += 1
        return self.can_handle_result

    def get_metrics(self) -> EngineMetrics | None:
        return self._recorder.snapshot() if self.track_metrics else None


class MockEngineFactory(EngineFactory):
    """Factory handing out pre-built :class:`MockEngine` instances by name.

    Names without a prepared instance get a default healthy ``MockEngine``.
    """

    def __init__(self, engines: dict[str, MockEngine] | None = None) -> None:
        super().__init__()
        self.engines: dict[str, MockEngine] = {}
        self._should_throw_on_create = False
        for engine in (engines or {}).values():
            self.add_engine(engine)

    def add_engine(self, engine: MockEngine) -> None:
        self.engines[engine.name] = engine
        self.register_engine(engine.name, lambda **_: self.engines[engine.name])

    def set_should_throw_on_create(self, value: bool) -> None:
        self._should_throw_on_create = value

    async def create_engine(self, engine_name: str, **options: Any) -> BaseEngine:
        if self._should_throw_on_create:
            raise RuntimeError(f"Cannot create engine {engine_name}")
        if engine_name not in self.engines:
            self.add_engine(MockEngine(engine_name))
        return await super().create_engine(engine_name, **options)
