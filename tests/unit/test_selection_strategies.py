"""Tests for the engine selection strategies."""
import pytest

from md2pdf.engines.models import (
    EngineCapabilities,
    GenerationContext,
    HealthStatus,
    PerformanceSnapshot,
    TOCConfig,
)
from md2pdf.engines.strategies import (
    AdaptiveSelectionStrategy,
    CapabilityBasedSelectionStrategy,
    HealthFirstSelectionStrategy,
    LoadBalancedSelectionStrategy,
    PrimaryFirstSelectionStrategy,
    create_selection_strategy,
)
from md2pdf.testing import MockEngine
from md2pdf.utils.exceptions import ConfigurationError

GB = 1024 * 1024 * 1024


def healthy(name, **kwargs):
    return HealthStatus(is_healthy=True, engine_name=name, **kwargs)


def unhealthy(name):
    return HealthStatus(is_healthy=False, engine_name=name, errors=["down"])


@pytest.fixture
def ctx():
    return GenerationContext(html_content="<p>x</p>", output_path="out.pdf")


ALL_STRATEGIES = [
    HealthFirstSelectionStrategy,
    lambda: PrimaryFirstSelectionStrategy("a"),
    LoadBalancedSelectionStrategy,
    CapabilityBasedSelectionStrategy,
    AdaptiveSelectionStrategy,
]


class TestCommonBehaviour:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("make_strategy", ALL_STRATEGIES)
    async def test_empty_engine_list(self, make_strategy, ctx):
        assert await make_strategy().select_engine(ctx, [], []) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("make_strategy", ALL_STRATEGIES)
    async def test_all_unhealthy(self, make_strategy, ctx):
        engines = [MockEngine("a"), MockEngine("b")]
        statuses = [unhealthy("a"), unhealthy("b")]

        assert await make_strategy().select_engine(ctx, engines, statuses) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("make_strategy", ALL_STRATEGIES)
    async def test_none_can_handle(self, make_strategy, ctx):
        engines = [MockEngine("a", can_handle_result=False), MockEngine("b", can_handle_result=False)]
        statuses = [healthy("a"), healthy("b")]

        assert await make_strategy().select_engine(ctx, engines, statuses) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("make_strategy", ALL_STRATEGIES)
    async def test_engine_without_status_is_skipped(self, make_strategy, ctx):
        engines = [MockEngine("a"), MockEngine("b")]

        selected = await make_strategy().select_engine(ctx, engines, [healthy("b")])

        assert selected is engines[1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "make_strategy",
        [HealthFirstSelectionStrategy, lambda: PrimaryFirstSelectionStrategy("a"), CapabilityBasedSelectionStrategy],
    )
    async def test_selection_is_deterministic(self, make_strategy, ctx):
        engines = [MockEngine("a"), MockEngine("b"), MockEngine("c")]
        statuses = [healthy("a"), healthy("b"), healthy("c")]
        strategy = make_strategy()

        picks = {(await strategy.select_engine(ctx, engines, statuses)).name for _ in range(5)}

        assert len(picks) == 1


class TestHealthFirst:
    def test_score_formula(self):
        status = healthy(
            "a",
            performance=PerformanceSnapshot(
                success_rate=0.8,
                average_generation_time=2000,
                memory_usage=GB,
            ),
            errors=["one"],
        )

        # 100 + 0.8*50 + (50 - 2) + (25 - 1) - 10
        assert HealthFirstSelectionStrategy.calculate_health_score(status) == pytest.approx(202.0)

    def test_no_speed_bonus_without_timing(self):
        status = healthy("a", performance=PerformanceSnapshot(success_rate=1.0))

        assert HealthFirstSelectionStrategy.calculate_health_score(status) == pytest.approx(175.0)

    def test_score_never_negative(self):
        status = HealthStatus(is_healthy=False, engine_name="a", errors=["x"] * 20)

        assert HealthFirstSelectionStrategy.calculate_health_score(status) == 0.0

    @pytest.mark.asyncio
    async def test_picks_best_score(self, ctx):
        engines = [MockEngine("slow"), MockEngine("fast")]
        statuses = [
            healthy("slow", performance=PerformanceSnapshot(success_rate=0.5, average_generation_time=40_000)),
            healthy("fast", performance=PerformanceSnapshot(success_rate=1.0, average_generation_time=500)),
        ]

        selected = await HealthFirstSelectionStrategy().select_engine(ctx, engines, statuses)

        assert selected.name == "fast"

    @pytest.mark.asyncio
    async def test_tie_goes_to_first(self, ctx):
        engines = [MockEngine("a"), MockEngine("b")]

        selected = await HealthFirstSelectionStrategy().select_engine(
            ctx, engines, [healthy("a"), healthy("b")]
        )

        assert selected.name == "a"


class TestPrimaryFirst:
    @pytest.mark.asyncio
    async def test_returns_primary_when_usable(self, ctx):
        engines = [MockEngine("other"), MockEngine("main")]
        statuses = [
            healthy("other", performance=PerformanceSnapshot(success_rate=1.0)),
            healthy("main"),
        ]

        selected = await PrimaryFirstSelectionStrategy("main").select_engine(ctx, engines, statuses)

        assert selected.name == "main"

    @pytest.mark.asyncio
    async def test_falls_back_when_primary_unhealthy(self, ctx):
        engines = [MockEngine("main"), MockEngine("b"), MockEngine("c")]
        statuses = [
            unhealthy("main"),
            healthy("b"),
            healthy("c", performance=PerformanceSnapshot(success_rate=1.0)),
        ]

        selected = await PrimaryFirstSelectionStrategy("main").select_engine(ctx, engines, statuses)

        assert selected.name == "c"

    @pytest.mark.asyncio
    async def test_falls_back_when_primary_cannot_handle(self, ctx):
        engines = [MockEngine("main", can_handle_result=False), MockEngine("b")]
        statuses = [healthy("main"), healthy("b")]

        selected = await PrimaryFirstSelectionStrategy("main").select_engine(ctx, engines, statuses)

        assert selected.name == "b"

    @pytest.mark.asyncio
    async def test_missing_primary_uses_health_first(self, ctx):
        engines = [MockEngine("a"), MockEngine("b")]

        selected = await PrimaryFirstSelectionStrategy("main").select_engine(
            ctx, engines, [healthy("a"), healthy("b")]
        )

        assert selected.name == "a"


class TestLoadBalanced:
    @pytest.mark.asyncio
    async def test_round_robin(self, ctx):
        engines = [MockEngine("a"), MockEngine("b"), MockEngine("c")]
        statuses = [healthy("a"), healthy("b"), healthy("c")]
        strategy = LoadBalancedSelectionStrategy()

        picks = [(await strategy.select_engine(ctx, engines, statuses)).name for _ in range(6)]

        assert picks == ["a", "b", "c", "a", "b", "c"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("calls,k", [(7, 3), (10, 4), (5, 5), (1, 2)])
    async def test_fair_distribution(self, ctx, calls, k):
        engines = [MockEngine(f"e{i}") for i in range(k)]
        statuses = [healthy(f"e{i}") for i in range(k)]
        strategy = LoadBalancedSelectionStrategy()

        counts = {e.name: 0 for e in engines}
        for _ in range(calls):
            counts[(await strategy.select_engine(ctx, engines, statuses)).name] += 1

        assert all(calls // k <= c <= -(-calls // k) for c in counts.values())

    @pytest.mark.asyncio
    async def test_skips_unhealthy(self, ctx):
        engines = [MockEngine("a"), MockEngine("b"), MockEngine("c")]
        statuses = [healthy("a"), unhealthy("b"), healthy("c")]
        strategy = LoadBalancedSelectionStrategy()

        picks = [(await strategy.select_engine(ctx, engines, statuses)).name for _ in range(4)]

        assert picks == ["a", "c", "a", "c"]


class TestCapabilityBased:
    @pytest.mark.asyncio
    async def test_prefers_toc_capable_engine(self):
        ctx = GenerationContext(
            html_content="<p>x</p>",
            output_path="out.pdf",
            toc=TOCConfig(enabled=True),
        )
        plain = MockEngine("plain", capabilities=EngineCapabilities(supports_toc=False))
        toc = MockEngine("toc", capabilities=EngineCapabilities(supports_toc=True))

        selected = await CapabilityBasedSelectionStrategy().select_engine(
            ctx, [plain, toc], [healthy("plain"), healthy("toc")]
        )

        assert selected.name == "toc"

    def test_score_formula(self):
        ctx = GenerationContext(
            html_content="<p>x</p>",
            output_path="out.pdf",
            toc=TOCConfig(enabled=True),
            enable_chinese_support=True,
            custom_css="body { color: red; }",
        )
        engine = MockEngine(
            "full",
            capabilities=EngineCapabilities(
                supports_toc=True,
                supports_chinese_text=True,
                supports_custom_css=True,
                max_concurrent_jobs=3,
            ),
        )

        assert CapabilityBasedSelectionStrategy.calculate_capability_score(engine, ctx) == 61

    def test_unrequested_features_do_not_score(self, ctx):
        engine = MockEngine("full", capabilities=EngineCapabilities(supports_toc=True, max_concurrent_jobs=2))

        assert CapabilityBasedSelectionStrategy.calculate_capability_score(engine, ctx) == 4

    @pytest.mark.asyncio
    async def test_concurrency_breaks_ties(self, ctx):
        small = MockEngine("small", capabilities=EngineCapabilities(max_concurrent_jobs=1))
        big = MockEngine("big", capabilities=EngineCapabilities(max_concurrent_jobs=4))

        selected = await CapabilityBasedSelectionStrategy().select_engine(
            ctx, [small, big], [healthy("small"), healthy("big")]
        )

        assert selected.name == "big"


class TestAdaptive:
    @pytest.mark.asyncio
    async def test_prefers_faster_history(self, ctx):
        strategy = AdaptiveSelectionStrategy()
        strategy.record_performance("fast", True, 1000)
        strategy.record_performance("fast", True, 1000)
        strategy.record_performance("slow", True, 8000)
        engines = [MockEngine("fast"), MockEngine("slow")]

        selected = await strategy.select_engine(ctx, engines, [healthy("fast"), healthy("slow")])

        assert selected.name == "fast"

    def test_recorded_scores(self):
        strategy = AdaptiveSelectionStrategy()
        strategy.record_performance("a", True, 1000)
        strategy.record_performance("a", True, 8000)
        strategy.record_performance("a", False, 100)

        assert strategy.get_history("a") == [90.0, 50.0, 0.0]

    def test_neutral_score_without_history(self):
        assert AdaptiveSelectionStrategy().calculate_adaptive_score("new") == 50.0

    def test_recent_outcomes_weigh_more(self):
        strategy = AdaptiveSelectionStrategy()
        for _ in range(10):
            strategy.record_performance("a", False, 0)
        for _ in range(10):
            strategy.record_performance("a", True, 0)

        # overall mean 50, last-10 mean 100
        assert strategy.calculate_adaptive_score("a") == pytest.approx(85.0)

    def test_history_is_bounded(self):
        strategy = AdaptiveSelectionStrategy()
        for _ in range(150):
            strategy.record_performance("a", True, 0)

        assert len(strategy.get_history("a")) == 100

    @pytest.mark.asyncio
    async def test_new_engine_beats_failing_one(self, ctx):
        strategy = AdaptiveSelectionStrategy()
        strategy.record_performance("bad", False, 100)
        engines = [MockEngine("bad"), MockEngine("new")]

        selected = await strategy.select_engine(ctx, engines, [healthy("bad"), healthy("new")])

        assert selected.name == "new"

    @pytest.mark.asyncio
    async def test_first_engine_wins_without_history(self, ctx):
        engines = [MockEngine("a"), MockEngine("b")]

        selected = await AdaptiveSelectionStrategy().select_engine(
            ctx, engines, [healthy("a"), healthy("b")]
        )

        assert selected.name == "a"


class TestCreateSelectionStrategy:
    @pytest.mark.parametrize(
        "name,cls",
        [
            ("health-first", HealthFirstSelectionStrategy),
            ("load_balanced", LoadBalancedSelectionStrategy),
            ("Capability-Based", CapabilityBasedSelectionStrategy),
            ("adaptive", AdaptiveSelectionStrategy),
        ],
    )
    def test_known_names(self, name, cls):
        assert isinstance(create_selection_strategy(name), cls)

    def test_primary_first_needs_primary(self):
        strategy = create_selection_strategy("primary-first", primary_engine="playwright")
        assert isinstance(strategy, PrimaryFirstSelectionStrategy)
        assert strategy.primary_engine_name == "playwright"

        with pytest.raises(ConfigurationError):
            create_selection_strategy("primary-first")

    def test_unknown_name(self):
        with pytest.raises(ConfigurationError, match="Unknown selection strategy"):
            create_selection_strategy("random")
