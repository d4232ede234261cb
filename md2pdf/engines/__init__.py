"""Pluggable PDF engines with failover, health monitoring and selection policies."""

from __future__ import annotations

from md2pdf.engines.base import BaseEngine, EngineSelectionStrategy
from md2pdf.engines.factory import EngineFactory
from md2pdf.engines.manager import EngineManager
from md2pdf.engines.models import (
    EngineCapabilities,
    EngineManagerConfig,
    EngineMetrics,
    EngineOptions,
    EngineResult,
    GenerationContext,
    HealthStatus,
    ResourceLimits,
)
from md2pdf.engines.strategies import (
    AdaptiveSelectionStrategy,
    CapabilityBasedSelectionStrategy,
    HealthFirstSelectionStrategy,
    LoadBalancedSelectionStrategy,
    PrimaryFirstSelectionStrategy,
    create_selection_strategy,
)

DEFAULT_ENGINE_CONFIG = EngineManagerConfig(
    primary_engine="playwright",
    fallback_engines=["chrome-headless", "reportlab"],
    health_check_interval=30_000,
    max_retries=2,
    retry_delay=1_000,
    enable_metrics=True,
    resource_limits=ResourceLimits(
        max_memory_usage=1024 * 1024 * 1024,
        max_concurrent_tasks=3,
        task_timeout=60_000,
    ),
)


def create_default_engine_manager(
    config: EngineManagerConfig | None = None,
) -> tuple[EngineManager, EngineFactory]:
    """Return an uninitialised manager wired to the bundled engines.

    The selection policy is health-first.
    """
    factory = EngineFactory.with_default_engines()
    manager = EngineManager(
        config or DEFAULT_ENGINE_CONFIG,
        factory,
        HealthFirstSelectionStrategy(),
    )
    return manager, factory


__all__ = [
    "DEFAULT_ENGINE_CONFIG",
    "AdaptiveSelectionStrategy",
    "BaseEngine",
    "CapabilityBasedSelectionStrategy",
    "EngineCapabilities",
    "EngineFactory",
    "EngineManager",
    "EngineManagerConfig",
    "EngineMetrics",
    "EngineOptions",
    "EngineResult",
    "EngineSelectionStrategy",
    "GenerationContext",
    "HealthFirstSelectionStrategy",
    "HealthStatus",
    "LoadBalancedSelectionStrategy",
    "PrimaryFirstSelectionStrategy",
    "create_default_engine_manager",
    "create_selection_strategy",
]
