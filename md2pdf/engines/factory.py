"""Named registry of engine constructors.

The factory never keeps engine instances: every :meth:`EngineFactory.create_engine`
call returns a fresh, uninitialised engine, and the caller decides whether to
reuse it.
"""

from __future__ import annotations

from typing import Any, Callable

from md2pdf.engines.base import BaseEngine
from md2pdf.utils.exceptions import EngineConstructionError, UnknownEngineError
from md2pdf.utils.logging import get_logger

logger = get_logger(__name__)

EngineConstructor = Callable[..., BaseEngine]


class EngineFactory:
    """Map engine names to constructors.

    Typical lifecycle::

        factory = EngineFactory.with_default_engines()
        factory.register_engine("custom", CustomEngine)
        engine = await factory.create_engine("custom")
    """

    def __init__(self) -> None:
        self._registry: dict[str, EngineConstructor] = {}

    @classmethod
    def with_default_engines(cls) -> EngineFactory:
        """Return a factory with the bundled backends registered."""
        from md2pdf.engines.chrome_headless_engine import ChromeHeadlessEngine
        from md2pdf.engines.playwright_engine import PlaywrightEngine
        from md2pdf.engines.reportlab_engine import ReportLabEngine

        factory = cls()
        factory.register_engine(PlaywrightEngine.name, PlaywrightEngine)
        factory.register_engine(ChromeHeadlessEngine.name, ChromeHeadlessEngine)
        factory.register_engine(ReportLabEngine.name, ReportLabEngine)
        return factory

    async def create_engine(self, engine_name: str, **options: Any) -> BaseEngine:
        """Construct a new engine registered under *engine_name*.

        Raises :class:`UnknownEngineError` for unregistered names and
        :class:`EngineConstructionError` when the constructor itself fails.
        """
        constructor = self._registry.get(engine_name)
        if constructor is None:
            raise UnknownEngineError(engine_name, self.get_available_engines())

        try:
            engine = constructor(**options)
        except Exception as exc:
            raise EngineConstructionError(engine_name, str(exc)) from exc

        logger.debug("engine_created", engine=engine_name)
        return engine

    def get_available_engines(self) -> list[str]:
        return list(self._registry)

    def register_engine(self, name: str, constructor: EngineConstructor) -> None:
        """Register *constructor* under *name*; the last registration wins."""
        if name in self._registry:
            logger.warning("engine_registration_overwritten", engine=name)
        self._registry[name] = constructor
        logger.debug("engine_registered", engine=name)

    def unregister_engine(self, name: str) -> bool:
        return self._registry.pop(name, None) is not None

    def has_engine(self, name: str) -> bool:
        return name in self._registry

    def __contains__(self, name: str) -> bool:
        return self.has_engine(name)

    def __len__(self) -> int:
        return len(self._registry)
