"""Abstract contracts for PDF engines and engine selection strategies."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from md2pdf.engines.models import (
    EngineCapabilities,
    EngineMetrics,
    EngineOptions,
    EngineResult,
    GenerationContext,
    HealthStatus,
    ResourceUsage,
)


class BaseEngine(ABC):
    """A pluggable backend that turns a :class:`GenerationContext` into a PDF.

    Lifecycle::

        engine = SomeEngine()
        await engine.initialize()          # idempotent
        result = await engine.generate_pdf(context, options)
        await engine.cleanup()             # idempotent, never raises

    ``generate_pdf`` reports failures through :class:`EngineResult` rather than
    raising.  Each engine owns its native resources (browser process,
    executable handle) and serialises access to them internally.
    """

    name: str
    version: str
    capabilities: EngineCapabilities

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend.  Raises when the backend is unavailable."""
        ...

    @abstractmethod
    async def generate_pdf(
        self,
        context: GenerationContext,
        options: EngineOptions,
    ) -> EngineResult:
        ...

    @abstractmethod
    async def health_check(self) -> HealthStatus:
        ...

    @abstractmethod
    async def get_resource_usage(self) -> ResourceUsage:
        ...

    @abstractmethod
    async def cleanup(self) -> None:
        ...

    @abstractmethod
    async def can_handle(self, context: GenerationContext) -> bool:
        """Return whether this engine supports *context*.  Must not raise."""
        ...

    def get_metrics(self) -> EngineMetrics | None:
        """Cumulative counters, or ``None`` when the engine does not track them."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} version={self.version!r}>"


class EngineSelectionStrategy(ABC):
    """Policy that picks one engine for a job, or ``None`` when none qualifies."""

    @abstractmethod
    async def select_engine(
        self,
        context: GenerationContext,
        available_engines: list[BaseEngine],
        health_statuses: list[HealthStatus],
    ) -> BaseEngine | None:
        ...

    async def _eligible_engines(
        self,
        context: GenerationContext,
        available_engines: list[BaseEngine],
        health_statuses: list[HealthStatus],
    ) -> list[tuple[BaseEngine, HealthStatus]]:
        """Return the healthy engines able to handle *context*, in input order.

        ``can_handle`` probes run concurrently.
        """
        statuses = {s.engine_name: s for s in health_statuses}
        verdicts = await asyncio.gather(
            *(engine.can_handle(context) for engine in available_engines)
        )
        eligible: list[tuple[BaseEngine, HealthStatus]] = []
        for engine, can_handle in zip(available_engines, verdicts):
            status = statuses.get(engine.name)
            if status is not None and status.is_healthy and can_handle:
                eligible.append((engine, status))
        return eligible
