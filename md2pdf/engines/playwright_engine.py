"""Headless-browser PDF engine built on Playwright's Chromium."""

from __future__ import annotations

import asyncio
import contextlib
import time
from importlib import metadata as importlib_metadata
from typing import Any

import aiofiles
from playwright.async_api import Browser, Playwright, async_playwright

from md2pdf.engines.base import BaseEngine
from md2pdf.engines.metrics import EngineMetricsRecorder, find_descendant_pids, with_external_memory
from md2pdf.engines.models import (
    EngineCapabilities,
    EngineMetrics,
    EngineOptions,
    EngineResult,
    GenerationContext,
    HealthStatus,
    PageMargin,
    ResourceUsage,
    ResultMetadata,
)
from md2pdf.engines.postprocess import count_pages, needs_postprocessing, postprocess_pdf
from md2pdf.engines.templates import render_full_html
from md2pdf.utils.exceptions import EngineGenerationError, EngineInitializationError
from md2pdf.utils.file_utils import ensure_parent_dir, resolve_pdf_path
from md2pdf.utils.logging import get_logger

_BASE_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

# Tried in order: bundled Chromium first, then common system installs.
_LAUNCH_CONFIGS: list[dict[str, Any]] = [
    {"args": _BASE_ARGS},
    {"executable_path": "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome", "args": ["--no-sandbox"]},
    {"executable_path": "/usr/bin/google-chrome", "args": ["--no-sandbox"]},
    {"executable_path": "/usr/bin/chromium-browser", "args": ["--no-sandbox"]},
    {"executable_path": "/usr/bin/chromium", "args": ["--no-sandbox"]},
]

_LAUNCH_TIMEOUT_MS = 10_000
_CONTENT_TIMEOUT_MS = 30_000
_CLOSE_TIMEOUT_S = 3.0
_DEFAULT_MARGIN = PageMargin()


def _is_browser_process(cmdline: list[str]) -> bool:
    # Playwright talks to Chromium over a pipe; renderers and helpers carry --type=.
    return "--remote-debugging-pipe" in cmdline and not any(arg.startswith("--type=") for arg in cmdline)


def _playwright_version() -> str:
    try:
        return importlib_metadata.version("playwright")
    except importlib_metadata.PackageNotFoundError:
        return "unknown"


class PlaywrightEngine(BaseEngine):
    """Render HTML with a long-lived headless Chromium and print it to PDF.

    One browser is shared by all jobs; each job gets its own page.  The
    rendered PDF is post-processed with pypdf for metadata and password
    protection.
    """

    name = "playwright"

    def __init__(self, launch_configs: list[dict[str, Any]] | None = None) -> None:
        self.version = _playwright_version()
        self.capabilities = EngineCapabilities(
            max_concurrent_jobs=3,
            supports_custom_css=True,
            supports_chinese_text=True,
            supports_toc=True,
            supports_header_footer=True,
            supports_bookmarks=True,
            supports_outline_generation=True,
        )
        self.logger = get_logger("engines.playwright")
        self._launch_configs = launch_configs or _LAUNCH_CONFIGS
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._init_lock = asyncio.Lock()
        self._browser_pids: set[int] = set()
        self._recorder = EngineMetricsRecorder(
            self.name, with_external_memory(lambda: self._browser_pids)
        )
        self._active_tasks = 0

    @property
    def is_initialized(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        async with self._init_lock:
            if self.is_initialized:
                return

            if self._playwright is None:
                self._playwright = await async_playwright().start()

            last_error: Exception | None = None
            for config in self._launch_configs:
                known_pids = find_descendant_pids(_is_browser_process)
                browser: Browser | None = None
                try:
                    browser = await self._playwright.chromium.launch(
                        headless=True,
                        timeout=_LAUNCH_TIMEOUT_MS,
                        **config,
                    )
                    page = await browser.new_page()
                    await page.close()
                except Exception as exc:
                    last_error = exc
                    if browser is not None:
                        with contextlib.suppress(Exception):
                            await browser.close()
                    self.logger.debug(
                        "browser_launch_failed",
                        executable=config.get("executable_path", "bundled"),
                        error=str(exc),
                    )
                    continue

                self._browser = browser
                self._browser_pids = find_descendant_pids(_is_browser_process) - known_pids
                self.logger.info(
                    "browser_launched",
                    executable=config.get("executable_path", "bundled"),
                    browser_version=browser.version,
                )
                return

            await self._stop_playwright()
            raise EngineInitializationError(self.name, str(last_error))

    async def cleanup(self) -> None:
        browser, self._browser = self._browser, None
        self._browser_pids = set()
        if browser is not None:
            try:
                await asyncio.wait_for(browser.close(), timeout=_CLOSE_TIMEOUT_S)
            except Exception as exc:
                self.logger.warning("browser_close_failed", error=str(exc))
        await self._stop_playwright()

    async def _stop_playwright(self) -> None:
        pw, self._playwright = self._playwright, None
        if pw is not None:
            try:
                await pw.stop()
            except Exception as exc:
                self.logger.warning("playwright_stop_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_pdf(
        self,
        context: GenerationContext,
        options: EngineOptions,
    ) -> EngineResult:
        start = time.perf_counter()
        self._active_tasks += 1
        self._recorder.record_start()

        try:
            if not self.is_initialized:
                await self.initialize()

            output_path = resolve_pdf_path(context.output_path)
            ensure_parent_dir(output_path)

            page = await self._browser.new_page()
            try:
                await page.set_content(
                    render_full_html(context),
                    wait_until="networkidle",
                    timeout=_CONTENT_TIMEOUT_MS,
                )
                pdf_bytes = await page.pdf(**self.build_pdf_options(options, context))
            finally:
                await page.close()

            pdf_bytes = self._postprocess(pdf_bytes, context)

            async with aiofiles.open(output_path, "wb") as fh:
                await fh.write(pdf_bytes)

            generation_time = (time.perf_counter() - start) * 1000
            self._recorder.record_success(generation_time)
            return EngineResult(
                success=True,
                output_path=str(output_path),
                metadata=ResultMetadata(
                    pages=count_pages(pdf_bytes),
                    file_size=len(pdf_bytes),
                    generation_time=generation_time,
                    engine_used=self.name,
                ),
            )
        except Exception as exc:
            self._recorder.record_failure(str(exc), context)
            self.logger.warning("pdf_generation_failed", error=str(exc))
            return EngineResult.failure(EngineGenerationError(self.name, str(exc)))
        finally:
            self._active_tasks -= 1

    def _postprocess(self, pdf_bytes: bytes, context: GenerationContext) -> bytes:
        if not needs_postprocessing(context.metadata, context.password_protection):
            return pdf_bytes
        try:
            return postprocess_pdf(pdf_bytes, context.metadata, context.password_protection)
        except Exception as exc:
            # A document without metadata beats no document, but an
            # unencrypted copy of a protected one is not acceptable.
            if context.password_protection is not None:
                raise
            self.logger.warning("pdf_postprocess_failed", error=str(exc))
            return pdf_bytes

    @staticmethod
    def build_pdf_options(options: EngineOptions, context: GenerationContext) -> dict[str, Any]:
        """Translate engine options into keyword arguments for ``page.pdf``."""
        margin = options.margin or _DEFAULT_MARGIN
        pdf_options: dict[str, Any] = {
            "format": options.format.value,
            "landscape": options.orientation.value == "landscape",
            "margin": margin.model_dump(),
            "display_header_footer": options.display_header_footer,
            "header_template": options.header_template,
            "footer_template": options.footer_template,
            "print_background": options.print_background,
            "scale": options.scale,
            "prefer_css_page_size": options.prefer_css_page_size,
        }
        if context.bookmarks is not None and context.bookmarks.enabled:
            pdf_options["outline"] = True
            pdf_options["tagged"] = True
        return pdf_options

    # ------------------------------------------------------------------
    # Health and metrics
    # ------------------------------------------------------------------

    async def health_check(self) -> HealthStatus:
        errors: list[str] = []
        try:
            if not self.is_initialized:
                await self.initialize()
            page = await self._browser.new_page()
            try:
                await page.set_content("<html><body><h1>Health Check</h1></body></html>")
            except Exception as exc:
                errors.append(f"Page operation failed: {exc}")
            finally:
                await page.close()
        except Exception as exc:
            errors.append(f"Health check failed: {exc}")

        return HealthStatus(
            is_healthy=not errors,
            engine_name=self.name,
            version=self.version,
            errors=errors,
            performance=self._recorder.performance(),
        )

    async def get_resource_usage(self) -> ResourceUsage:
        return ResourceUsage(
            memory_usage=self._recorder.memory_probe(),
            active_tasks=self._active_tasks,
            average_task_time=self._recorder.average_time,
        )

    async def can_handle(self, context: GenerationContext) -> bool:
        return True

    def get_metrics(self) -> EngineMetrics:
        return self._recorder.snapshot()
