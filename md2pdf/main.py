from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from md2pdf import __version__
from md2pdf.api.v1.middleware.error_handler import ErrorHandlerMiddleware
from md2pdf.api.v1.middleware.logging_middleware import LoggingMiddleware
from md2pdf.api.v1.router import v1_router
from md2pdf.config import settings
from md2pdf.engines import EngineFactory, EngineManager, create_selection_strategy
from md2pdf.monitoring import EngineMonitoringService
from md2pdf.utils.file_utils import ensure_dir
from md2pdf.utils.logging import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(debug=settings.debug)
    logger = get_logger("startup")
    logger.info("Starting MD2PDF service", version=__version__)

    ensure_dir(settings.output_dir)

    config = settings.engine_config()
    manager = EngineManager(
        config,
        EngineFactory.with_default_engines(),
        create_selection_strategy(settings.selection_strategy, config.primary_engine),
    )
    await manager.initialize()
    app.state.engine_manager = manager
    logger.info(
        "Engine manager initialized",
        engines=manager.get_available_engines(),
        healthy=manager.get_healthy_engines(),
    )

    monitor = EngineMonitoringService(settings.monitor_config(), manager)
    await monitor.start()
    app.state.engine_monitor = monitor

    yield

    logger.info("Shutting down")
    await monitor.stop()
    await manager.cleanup()


def create_app() -> FastAPI:
    app = FastAPI(
        title="MD2PDF",
        description="Multi-engine HTML to PDF generation with automatic failover",
        version=__version__,
        lifespan=lifespan,
    )

    # Middleware is applied in reverse order -- outermost first.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    return app


app = create_app()


def run_server() -> None:
    """Run the API server with the configured host and port."""
    import uvicorn

    uvicorn.run(
        "md2pdf.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    run_server()
