"""FastAPI dependency functions for injection into endpoint handlers.

The engine manager and the monitoring service are expensive to create
(browser processes, background tasks), so they are built once during the
lifespan, stored on ``app.state`` and simply looked up here.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import Request

from md2pdf.config import settings
from md2pdf.engines.manager import EngineManager
from md2pdf.monitoring.service import EngineMonitoringService
from md2pdf.utils.file_utils import ensure_dir


def get_engine_manager(request: Request) -> EngineManager:
    """Return the engine manager stored on ``app.state``."""
    return request.app.state.engine_manager


def get_engine_monitor(request: Request) -> EngineMonitoringService:
    """Return the monitoring service stored on ``app.state``."""
    return request.app.state.engine_monitor


def get_output_dir() -> Path:
    """Return the configured output directory, creating it if needed."""
    return ensure_dir(settings.output_dir)
