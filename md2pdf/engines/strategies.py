"""Engine selection strategies.

Every strategy first narrows the candidates to engines whose latest health
snapshot is healthy and whose ``can_handle`` probe accepts the context, then
applies its own policy.  "No suitable engine" is always expressed as ``None``.

=====================  ==================================================
Strategy               Policy
=====================  ==================================================
``health-first``       highest health/performance score
``primary-first``      the named primary when usable, else health-first
``load-balanced``      round robin over the current candidates
``capability-based``   best match between context needs and capabilities
``adaptive``           best recorded outcome history, recency weighted
=====================  ==================================================
"""

from __future__ import annotations

from collections import deque
from statistics import fmean

from md2pdf.engines.base import BaseEngine, EngineSelectionStrategy
from md2pdf.engines.models import GenerationContext, HealthStatus
from md2pdf.utils.exceptions import ConfigurationError
from md2pdf.utils.logging import get_logger

logger = get_logger(__name__)

_BYTES_PER_GB = 1024 * 1024 * 1024


class HealthFirstSelectionStrategy(EngineSelectionStrategy):
    """Pick the engine with the best health and performance score.

    Ties go to the engine listed first.
    """

    async def select_engine(
        self,
        context: GenerationContext,
        available_engines: list[BaseEngine],
        health_statuses: list[HealthStatus],
    ) -> BaseEngine | None:
        if not available_engines:
            return None

        candidates = await self._eligible_engines(context, available_engines, health_statuses)
        if not candidates:
            return None

        # max() keeps the first of equal scores.
        engine, _ = max(candidates, key=lambda c: self.calculate_health_score(c[1]))
        return engine

    @staticmethod
    def calculate_health_score(status: HealthStatus) -> float:
        score = 0.0
        if status.is_healthy:
            score += 100

        perf = status.performance
        if perf is not None:
            score += perf.success_rate * 50
            # No timing data yet means no speed bonus.
            if perf.average_generation_time > 0:
                score += max(0.0, 50 - perf.average_generation_time / 1000)
            score += max(0.0, 25 - perf.memory_usage / _BYTES_PER_GB)

        score -= len(status.errors) * 10
        return max(0.0, score)


class PrimaryFirstSelectionStrategy(EngineSelectionStrategy):
    """Use the primary engine whenever it is healthy and capable."""

    def __init__(self, primary_engine_name: str) -> None:
        self.primary_engine_name = primary_engine_name
        self._fallback = HealthFirstSelectionStrategy()

    async def select_engine(
        self,
        context: GenerationContext,
        available_engines: list[BaseEngine],
        health_statuses: list[HealthStatus],
    ) -> BaseEngine | None:
        if not available_engines:
            return None

        primary = next(
            (e for e in available_engines if e.name == self.primary_engine_name),
            None,
        )
        if primary is not None:
            status = next(
                (s for s in health_statuses if s.engine_name == self.primary_engine_name),
                None,
            )
            if status is not None and status.is_healthy and await primary.can_handle(context):
                return primary

        others = [e for e in available_engines if e.name != self.primary_engine_name]
        other_statuses = [s for s in health_statuses if s.engine_name != self.primary_engine_name]
        return await self._fallback.select_engine(context, others, other_statuses)


class LoadBalancedSelectionStrategy(EngineSelectionStrategy):
    """Rotate through the currently eligible engines.

    The cursor is taken modulo the size of the candidate set at call time,
    so fairness holds only while that set is stable.
    """

    def __init__(self) -> None:
        self._cursor = 0

    async def select_engine(
        self,
        context: GenerationContext,
        available_engines: list[BaseEngine],
        health_statuses: list[HealthStatus],
    ) -> BaseEngine | None:
        if not available_engines:
            return None

        candidates = await self._eligible_engines(context, available_engines, health_statuses)
        if not candidates:
            return None

        engine, _ = candidates[self._cursor % len(candidates)]
        self._cursor = (self._cursor + 1) % len(candidates)
        return engine


class CapabilityBasedSelectionStrategy(EngineSelectionStrategy):
    """Pick the engine whose capabilities best match what the context asks for."""

    async def select_engine(
        self,
        context: GenerationContext,
        available_engines: list[BaseEngine],
        health_statuses: list[HealthStatus],
    ) -> BaseEngine | None:
        if not available_engines:
            return None

        candidates = await self._eligible_engines(context, available_engines, health_statuses)
        if not candidates:
            return None

        engine, _ = max(
            candidates,
            key=lambda c: self.calculate_capability_score(c[0], context),
        )
        return engine

    @staticmethod
    def calculate_capability_score(engine: BaseEngine, context: GenerationContext) -> int:
        caps = engine.capabilities
        score = 0
        if context.toc is not None and context.toc.enabled and caps.supports_toc:
            score += 20
        if context.enable_chinese_support and caps.supports_chinese_text:
            score += 20
        if context.custom_css and caps.supports_custom_css:
            score += 15
        score += caps.max_concurrent_jobs * 2
        return score


class AdaptiveSelectionStrategy(EngineSelectionStrategy):
    """Prefer engines with a good recorded track record.

    Outcomes are fed in through :meth:`record_performance`; health
    snapshots are only used for filtering.  An engine without history
    scores a neutral 50.
    """

    max_history_size = 100
    recent_window = 10
    neutral_score = 50.0

    def __init__(self) -> None:
        self._history: dict[str, deque[float]] = {}

    async def select_engine(
        self,
        context: GenerationContext,
        available_engines: list[BaseEngine],
        health_statuses: list[HealthStatus],
    ) -> BaseEngine | None:
        if not available_engines:
            return None

        candidates = await self._eligible_engines(context, available_engines, health_statuses)
        if not candidates:
            return None

        best_engine = candidates[0][0]
        best_score = -1.0
        for engine, _ in candidates:
            score = self.calculate_adaptive_score(engine.name)
            if score > best_score:
                best_engine, best_score = engine, score
        return best_engine

    def calculate_adaptive_score(self, engine_name: str) -> float:
        history = self._history.get(engine_name)
        if not history:
            return self.neutral_score

        overall = fmean(history)
        recent = fmean(list(history)[-self.recent_window:])
        return overall * 0.3 + recent * 0.7

    def record_performance(self, engine_name: str, success: bool, generation_time: float) -> None:
        """Record one outcome; *generation_time* is in milliseconds."""
        score = 50.0 if success else 0.0
        if success and generation_time < 5000:
            score += max(0.0, 50 - generation_time / 100)

        history = self._history.setdefault(engine_name, deque(maxlen=self.max_history_size))
        history.append(score)
        logger.debug("engine_performance_recorded", engine=engine_name, score=score)

    def get_history(self, engine_name: str) -> list[float]:
        return list(self._history.get(engine_name, ()))


_STRATEGIES = {
    "health-first": HealthFirstSelectionStrategy,
    "load-balanced": LoadBalancedSelectionStrategy,
    "capability-based": CapabilityBasedSelectionStrategy,
    "adaptive": AdaptiveSelectionStrategy,
}


def create_selection_strategy(name: str, primary_engine: str = "") -> EngineSelectionStrategy:
    """Build a strategy from its configuration name."""
    key = name.lower().strip().replace("_", "-")
    if key == "primary-first":
        if not primary_engine:
            raise ConfigurationError("primary-first strategy requires a primary engine name")
        return PrimaryFirstSelectionStrategy(primary_engine)

    strategy_cls = _STRATEGIES.get(key)
    if strategy_cls is None:
        raise ConfigurationError(
            f"Unknown selection strategy: {name}. "
            f"Supported: primary-first, {', '.join(_STRATEGIES)}"
        )
    return strategy_cls()
