from pydantic_settings import BaseSettings

from md2pdf.engines.models import EngineManagerConfig, ResourceLimits
from md2pdf.monitoring.models import MonitorConfig


class Settings(BaseSettings):
    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Output
    output_dir: str = "./output"

    # Engines
    primary_engine: str = "playwright"
    fallback_engines: list[str] = ["chrome-headless", "reportlab"]
    selection_strategy: str = "health-first"
    health_check_interval: int = 30_000  # ms, 0 disables periodic checks
    max_retries: int = 2
    retry_delay: int = 1_000  # ms
    enable_metrics: bool = True
    task_timeout: int = 60_000  # ms
    max_memory_usage: int = 1024 * 1024 * 1024  # bytes
    max_concurrent_tasks: int = 3

    # Monitoring
    monitoring_enabled: bool = True
    monitoring_metrics_interval: int = 60_000  # ms
    monitoring_retention_period: int = 24 * 60 * 60 * 1000  # ms

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "MD2PDF_"}

    def engine_config(self) -> EngineManagerConfig:
        return EngineManagerConfig(
            primary_engine=self.primary_engine,
            fallback_engines=self.fallback_engines,
            health_check_interval=self.health_check_interval,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            enable_metrics=self.enable_metrics,
            resource_limits=ResourceLimits(
                max_memory_usage=self.max_memory_usage,
                max_concurrent_tasks=self.max_concurrent_tasks,
                task_timeout=self.task_timeout,
            ),
        )

    def monitor_config(self) -> MonitorConfig:
        return MonitorConfig(
            enabled=self.monitoring_enabled,
            health_check_interval=self.health_check_interval or 30_000,
            performance_metrics_interval=self.monitoring_metrics_interval,
            retention_period=self.monitoring_retention_period,
        )


settings = Settings()
