"""Data models shared by PDF engines, selection strategies and the engine manager."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PageFormat(str, Enum):
    A4 = "A4"
    A3 = "A3"
    A5 = "A5"
    LETTER = "Letter"
    LEGAL = "Legal"


class Orientation(str, Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


# ---------------------------------------------------------------------------
# Page layout
# ---------------------------------------------------------------------------


class PageMargin(BaseModel):
    top: str = "1in"
    right: str = "1in"
    bottom: str = "1in"
    left: str = "1in"


class EngineOptions(BaseModel):
    """Page-layout parameters passed alongside a :class:`GenerationContext`."""

    format: PageFormat = PageFormat.A4
    orientation: Orientation = Orientation.PORTRAIT
    margin: PageMargin | None = None
    display_header_footer: bool = False
    header_template: str = ""
    footer_template: str = ""
    print_background: bool = True
    scale: float = Field(default=1.0, ge=0.1, le=2.0)
    prefer_css_page_size: bool = False


# ---------------------------------------------------------------------------
# Generation request
# ---------------------------------------------------------------------------


class DocumentMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str | None = None
    author: str | None = None
    subject: str | None = None
    keywords: str | None = None
    creator: str | None = None
    producer: str | None = None
    creation_date: datetime | None = None
    mod_date: datetime | None = None


class TOCConfig(BaseModel):
    enabled: bool = False
    max_depth: int = Field(default=3, ge=1, le=6)
    include_page_numbers: bool = True
    title: str | None = None


class BookmarkItem(BaseModel):
    title: str
    dest: int | str
    children: list[BookmarkItem] = []


class BookmarkConfig(BaseModel):
    enabled: bool = False
    max_depth: int = Field(default=3, ge=1, le=6)
    include_page_numbers: bool = False
    use_existing_toc: bool = False
    outline: list[BookmarkItem] = []


class PdfOptions(BaseModel):
    include_page_numbers: bool = False


class PdfPermissions(BaseModel):
    printing: bool = True
    modifying: bool = True
    copying: bool = True
    annotating: bool = True
    filling_forms: bool = True
    content_accessibility: bool = True
    document_assembly: bool = True


class PasswordProtection(BaseModel):
    user_password: str | None = None
    owner_password: str | None = None
    permissions: PdfPermissions = PdfPermissions()


class GenerationContext(BaseModel):
    """One conversion job.  Immutable once created; shared by every retry."""

    model_config = ConfigDict(frozen=True)

    html_content: str
    output_path: str
    title: str | None = None
    custom_css: str | None = None
    enable_chinese_support: bool = False
    syntax_highlighting_theme: str | None = None
    metadata: DocumentMetadata | None = None
    toc: TOCConfig | None = None
    bookmarks: BookmarkConfig | None = None
    pdf_options: PdfOptions | None = None
    password_protection: PasswordProtection | None = None


# ---------------------------------------------------------------------------
# Engine descriptors and results
# ---------------------------------------------------------------------------


class EngineCapabilities(BaseModel):
    supported_formats: list[str] = [f.value for f in PageFormat]
    max_concurrent_jobs: int = 1
    supports_custom_css: bool = False
    supports_chinese_text: bool = False
    supports_toc: bool = False
    supports_header_footer: bool = False
    supports_bookmarks: bool = False
    supports_outline_generation: bool = False


class PerformanceSnapshot(BaseModel):
    average_generation_time: float = 0.0  # ms
    success_rate: float = 0.0  # 0..1
    memory_usage: int = 0  # bytes


class HealthStatus(BaseModel):
    is_healthy: bool
    engine_name: str
    version: str | None = None
    last_check: datetime = Field(default_factory=utcnow)
    errors: list[str] = []
    performance: PerformanceSnapshot | None = None


class ResourceUsage(BaseModel):
    memory_usage: int = 0
    active_tasks: int = 0
    average_task_time: float = 0.0


class ResultMetadata(BaseModel):
    pages: int
    file_size: int
    generation_time: float  # ms
    engine_used: str


class EngineResult(BaseModel):
    success: bool
    output_path: str | None = None
    error: str | None = None
    error_type: str | None = None
    metadata: ResultMetadata | None = None

    @classmethod
    def failure(cls, error: BaseException | str) -> EngineResult:
        if isinstance(error, BaseException):
            return cls(success=False, error=str(error), error_type=type(error).__name__)
        return cls(success=False, error=error)


class FailureRecord(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    error: str
    context: GenerationContext | None = None


class EngineMetrics(BaseModel):
    engine_name: str
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    average_time: float = 0.0  # ms
    peak_memory_usage: int = 0
    uptime: float = 0.0  # ms
    last_failure: FailureRecord | None = None


# ---------------------------------------------------------------------------
# Manager configuration
# ---------------------------------------------------------------------------


class ResourceLimits(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_memory_usage: int = 1024 * 1024 * 1024  # 1GB
    max_concurrent_tasks: int = 3
    task_timeout: int = Field(default=60_000, gt=0)  # ms


class EngineManagerConfig(BaseModel):
    """Static configuration of an :class:`~md2pdf.engines.manager.EngineManager`.

    Intervals and delays are expressed in milliseconds.  ``max_retries`` is
    the exact number of primary attempts, so ``1`` means a single try and
    values below ``1`` are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    primary_engine: str = "playwright"
    fallback_engines: list[str] = []
    health_check_interval: int = 30_000
    max_retries: int = Field(default=2, ge=1)
    retry_delay: int = 1_000
    enable_metrics: bool = True
    resource_limits: ResourceLimits = ResourceLimits()

    def merged(self, patch: dict[str, Any]) -> EngineManagerConfig:
        """Return a validated copy with *patch* applied.

        A ``resource_limits`` dict is merged field by field; a
        :class:`ResourceLimits` instance replaces the current limits.
        """
        data = self.model_dump()
        for key, value in patch.items():
            if key == "resource_limits" and isinstance(value, dict):
                data["resource_limits"] = {**data["resource_limits"], **value}
            elif isinstance(value, BaseModel):
                data[key] = value.model_dump()
            else:
                data[key] = value
        return EngineManagerConfig.model_validate(data)
