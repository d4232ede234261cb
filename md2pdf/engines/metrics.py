"""Per-engine generation counters and process memory probes shared by the concrete engines."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Callable, Iterable

import psutil

from md2pdf.engines.models import (
    EngineMetrics,
    FailureRecord,
    GenerationContext,
    PerformanceSnapshot,
)

_GONE = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess)


def current_memory_usage() -> int:
    """Resident set size of this process in bytes."""
    try:
        return psutil.Process().memory_info().rss
    except _GONE:
        return 0


def process_tree_memory(pid: int) -> int:
    """Summed RSS of process *pid* and all of its descendants (0 once it is gone)."""
    try:
        root = psutil.Process(pid)
        procs = [root, *root.children(recursive=True)]
    except _GONE:
        return 0

    total = 0
    for proc in procs:
        with contextlib.suppress(*_GONE):
            total += proc.memory_info().rss
    return total


def find_descendant_pids(match: Callable[[list[str]], bool]) -> set[int]:
    """PIDs of descendants of this process whose command line satisfies *match*."""
    pids: set[int] = set()
    for proc in psutil.Process().children(recursive=True):
        with contextlib.suppress(*_GONE):
            if match(proc.cmdline()):
                pids.add(proc.pid)
    return pids


def kill_process_tree(pid: int) -> None:
    """Send SIGKILL to process *pid* and everything it spawned.

    Does not reap *pid*; the caller that started it still has to wait for it.
    """
    try:
        root = psutil.Process(pid)
        procs = [*root.children(recursive=True), root]
    except _GONE:
        return

    for proc in procs:
        with contextlib.suppress(*_GONE):
            proc.kill()


def with_external_memory(pids: Callable[[], Iterable[int]]) -> Callable[[], int]:
    """Memory probe: this process plus the process trees rooted at ``pids()``."""

    def probe() -> int:
        return current_memory_usage() + sum(process_tree_memory(pid) for pid in pids())

    return probe


class EngineMetricsRecorder:
    """Accumulates task outcomes for a single engine.

    ``average_time`` is a running mean over *successful* tasks only, so a
    burst of fast failures does not make an engine look quick.
    ``memory_probe`` reports the engine's current memory footprint in bytes;
    engines that drive an external browser include its processes.
    """

    def __init__(
        self,
        engine_name: str,
        memory_probe: Callable[[], int] = current_memory_usage,
    ) -> None:
        self._metrics = EngineMetrics(engine_name=engine_name)
        self._started = time.monotonic()
        self.memory_probe = memory_probe

    def record_start(self) -> None:
        self._metrics.total_tasks += 1

    def record_success(self, generation_time: float) -> None:
        m = self._metrics
        m.successful_tasks += 1
        m.average_time = (
            m.average_time * (m.successful_tasks - 1) + generation_time
        ) / m.successful_tasks
        self._touch()

    def record_failure(
        self,
        error: str,
        context: GenerationContext | None = None,
    ) -> None:
        self._metrics.failed_tasks += 1
        self._metrics.last_failure = FailureRecord(error=error, context=context)
        self._touch()

    def _touch(self) -> None:
        self._metrics.uptime = (time.monotonic() - self._started) * 1000
        self._metrics.peak_memory_usage = max(
            self._metrics.peak_memory_usage, self.memory_probe()
        )

    @property
    def success_rate(self) -> float:
        m = self._metrics
        return m.successful_tasks / m.total_tasks if m.total_tasks else 0.0

    @property
    def average_time(self) -> float:
        return self._metrics.average_time

    def performance(self) -> PerformanceSnapshot:
        return PerformanceSnapshot(
            average_generation_time=self._metrics.average_time,
            success_rate=self.success_rate,
            memory_usage=self.memory_probe(),
        )

    def snapshot(self) -> EngineMetrics:
        """Return a copy; callers never see the live counters."""
        return self._metrics.model_copy(deep=True)
