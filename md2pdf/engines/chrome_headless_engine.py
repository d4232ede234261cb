"""PDF engine that drives a local Chrome/Chromium binary through its CLI."""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import tempfile
import time
from pathlib import Path

import aiofiles

from md2pdf.engines.base import BaseEngine
from md2pdf.engines.metrics import EngineMetricsRecorder, kill_process_tree, with_external_memory
from md2pdf.engines.models import (
    EngineCapabilities,
    EngineMetrics,
    EngineOptions,
    EngineResult,
    GenerationContext,
    HealthStatus,
    ResourceUsage,
    ResultMetadata,
)
from md2pdf.engines.postprocess import count_pages, needs_postprocessing, postprocess_pdf
from md2pdf.engines.templates import render_full_html
from md2pdf.utils.exceptions import EngineGenerationError, EngineInitializationError
from md2pdf.utils.file_utils import ensure_parent_dir, resolve_pdf_path
from md2pdf.utils.logging import get_logger

KNOWN_CHROME_PATHS = (
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/usr/bin/chromium-browser",
    "/usr/bin/chromium",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
)
_PATH_COMMANDS = ("google-chrome", "google-chrome-stable", "chromium", "chromium-browser")

VERSION_TIMEOUT_S = 5.0
PRINT_TIMEOUT_S = 30.0


def find_chrome_executable() -> str | None:
    """Return the first Chrome/Chromium binary found on this machine."""
    for path in KNOWN_CHROME_PATHS:
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path
    for command in _PATH_COMMANDS:
        found = shutil.which(command)
        if found:
            return found
    return None


class ChromeHeadlessEngine(BaseEngine):
    """Print pages with ``chrome --headless --print-to-pdf``.

    Each job spawns one short-lived browser process against a temporary
    HTML file.  Without a DevTools connection there is no outline or
    table-of-contents support.
    """

    name = "chrome-headless"

    def __init__(self, chrome_path: str | None = None) -> None:
        self.version = "unknown"
        self.capabilities = EngineCapabilities(
            max_concurrent_jobs=2,
            supports_custom_css=True,
            supports_chinese_text=True,
            supports_toc=False,
            supports_header_footer=True,
        )
        self.logger = get_logger("engines.chrome_headless")
        self._configured_path = chrome_path
        self._chrome_path: str | None = None
        # Live browser processes by pid.
        self._processes: dict[int, asyncio.subprocess.Process] = {}
        self._recorder = EngineMetricsRecorder(
            self.name, with_external_memory(lambda: list(self._processes))
        )
        self._slots = asyncio.Semaphore(self.capabilities.max_concurrent_jobs)
        self._active_tasks = 0

    @property
    def chrome_path(self) -> str | None:
        return self._chrome_path

    async def initialize(self) -> None:
        if self._chrome_path is not None:
            return

        path = self._configured_path or find_chrome_executable()
        if path is None:
            raise EngineInitializationError(
                self.name,
                "Chrome executable not found. Please install Google Chrome or Chromium.",
            )

        try:
            self.version = await self._probe_version(path)
        except Exception as exc:
            raise EngineInitializationError(self.name, str(exc)) from exc

        self._chrome_path = path
        self.logger.info("chrome_found", path=path, version=self.version)

    async def _probe_version(self, path: str) -> str:
        proc = await asyncio.create_subprocess_exec(
            path,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        async with self._tracked(proc):
            try:
                stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=VERSION_TIMEOUT_S)
            except asyncio.TimeoutError:
                raise RuntimeError("Chrome version check timed out") from None

        output = stdout.decode(errors="replace").strip()
        if proc.returncode != 0 or not ("Chrome" in output or "Chromium" in output):
            raise RuntimeError(f"Chrome version check failed with code {proc.returncode}")
        return output

    async def cleanup(self) -> None:
        for pid in list(self._processes):
            kill_process_tree(pid)
        self._chrome_path = None

    @contextlib.asynccontextmanager
    async def _tracked(self, proc: asyncio.subprocess.Process):
        """Register *proc* while it runs; kill and reap it if it is still alive on exit.

        Exit includes cancellation by a caller's timeout.
        """
        self._processes[proc.pid] = proc
        try:
            yield proc
        finally:
            self._processes.pop(proc.pid, None)
            if proc.returncode is None:
                kill_process_tree(proc.pid)
                await proc.wait()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @staticmethod
    def build_command(
        chrome_path: str,
        html_path: str | Path,
        output_path: str | Path,
        options: EngineOptions,
    ) -> list[str]:
        """Command line for printing *html_path* to *output_path*."""
        args = [
            chrome_path,
            "--headless",
            "--disable-gpu",
            "--no-sandbox",
            "--disable-dev-shm-usage",
            "--disable-setuid-sandbox",
            f"--print-to-pdf={output_path}",
            "--print-to-pdf-no-header",
        ]
        if options.format:
            args.append(f"--print-to-pdf-paper-size={options.format.value.lower()}")
        args.append(Path(html_path).resolve().as_uri())
        return args

    async def generate_pdf(
        self,
        context: GenerationContext,
        options: EngineOptions,
    ) -> EngineResult:
        start = time.perf_counter()
        self._active_tasks += 1
        self._recorder.record_start()

        try:
            async with self._slots:
                if self._chrome_path is None:
                    await self.initialize()

                output_path = resolve_pdf_path(context.output_path)
                ensure_parent_dir(output_path)

                html_path = await self._write_temp_html(context)
                try:
                    await self._print_to_pdf(html_path, output_path, options)
                finally:
                    html_path.unlink(missing_ok=True)

            if not output_path.exists():
                raise RuntimeError("PDF file was not created")

            async with aiofiles.open(output_path, "rb") as fh:
                pdf_bytes = await fh.read()

            if needs_postprocessing(context.metadata, context.password_protection):
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
        except asyncio.CancelledError:
            self._recorder.record_failure("Generation cancelled", context)
            self.logger.warning("pdf_generation_cancelled")
            raise
        except Exception as exc:
            self._recorder.record_failure(str(exc), context)
            self.logger.warning("pdf_generation_failed", error=str(exc))
            return EngineResult.failure(EngineGenerationError(self.name, str(exc)))
        finally:
            self._active_tasks -= 1

    async def _write_temp_html(self, context: GenerationContext) -> Path:
        fd, name = tempfile.mkstemp(prefix="md2pdf_", suffix=".html")
        os.close(fd)
        path = Path(name)
        async with aiofiles.open(path, "w", encoding="utf-8") as fh:
            await fh.write(render_full_html(context))
        return path

    async def _print_to_pdf(self, html_path: Path, output_path: Path, options: EngineOptions) -> None:
        proc = await asyncio.create_subprocess_exec(
            *self.build_command(self._chrome_path, html_path, output_path, options),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        async with self._tracked(proc):
            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=PRINT_TIMEOUT_S)
            except asyncio.TimeoutError:
                raise RuntimeError(f"Chrome process timed out after {PRINT_TIMEOUT_S:.0f}s") from None

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise RuntimeError(f"Chrome process failed with code {proc.returncode}. Error: {detail}")

    def _postprocess(self, pdf_bytes: bytes, context: GenerationContext) -> bytes:
        try:
            return postprocess_pdf(pdf_bytes, context.metadata, context.password_protection)
        except Exception as exc:
            if context.password_protection is not None:
                raise
            self.logger.warning("pdf_postprocess_failed", error=str(exc))
            return pdf_bytes

    # ------------------------------------------------------------------
    # Health and metrics
    # ------------------------------------------------------------------

    async def health_check(self) -> HealthStatus:
        errors: list[str] = []
        try:
            if self._chrome_path is None:
                await self.initialize()
            else:
                await self._probe_version(self._chrome_path)
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
        return not (context.toc is not None and context.toc.enabled)

    def get_metrics(self) -> EngineMetrics:
        return self._recorder.snapshot()
