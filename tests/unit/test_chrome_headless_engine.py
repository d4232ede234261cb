"""Tests for the Chrome command-line engine.

A small shell script stands in for the browser binary: it answers
``--version`` and copies a prepared PDF to the ``--print-to-pdf`` target.
"""
import asyncio
import io
import stat
import sys

import psutil
import pytest
from pypdf import PdfReader
from reportlab.pdfgen import canvas

from md2pdf.engines.chrome_headless_engine import ChromeHeadlessEngine
from md2pdf.engines.factory import EngineFactory
from md2pdf.engines.manager import EngineManager
from md2pdf.engines.models import (
    DocumentMetadata,
    EngineOptions,
    EngineManagerConfig,
    GenerationContext,
    PageFormat,
    ResourceLimits,
    TOCConfig,
)
from md2pdf.engines.strategies import PrimaryFirstSelectionStrategy
from md2pdf.utils.exceptions import EngineInitializationError

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell script")

FAKE_CHROME = """#!/bin/sh
out=""
for arg in "$@"; do
  case "$arg" in
    --version) echo "{version}"; exit 0;;
    --print-to-pdf=*) out="${{arg#--print-to-pdf=}}";;
  esac
done
{body}
"""


def _two_page_pdf() -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf)
    c.drawString(72, 720, "page one")
    c.showPage()
    c.drawString(72, 720, "page two")
    c.showPage()
    c.save()
    return buf.getvalue()


def _write_script(path, version="Chromium 120.0.6099.109", body=None):
    path.write_text(FAKE_CHROME.format(version=version, body=body or "exit 0"))
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


@pytest.fixture
def fake_chrome(tmp_path):
    source = tmp_path / "source.pdf"
    source.write_bytes(_two_page_pdf())
    return _write_script(tmp_path / "chrome", body=f'cp "{source}" "$out"')


def make_context(output_dir, **kwargs):
    return GenerationContext(
        html_content="<h1>Chrome</h1>", output_path=str(output_dir / "chrome.pdf"), **kwargs
    )


class TestInitialize:
    @pytest.mark.asyncio
    async def test_detects_version(self, fake_chrome):
        engine = ChromeHeadlessEngine(chrome_path=fake_chrome)

        await engine.initialize()

        assert engine.chrome_path == fake_chrome
        assert engine.version == "Chromium 120.0.6099.109"

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        engine = ChromeHeadlessEngine(chrome_path=str(tmp_path / "nonexistent"))

        with pytest.raises(EngineInitializationError, match="chrome-headless"):
            await engine.initialize()
        assert engine.chrome_path is None

    @pytest.mark.asyncio
    async def test_rejects_binary_that_is_not_chrome(self, tmp_path):
        path = _write_script(tmp_path / "other", version="Firefox 121.0")
        engine = ChromeHeadlessEngine(chrome_path=path)

        with pytest.raises(EngineInitializationError, match="version check failed"):
            await engine.initialize()

    @pytest.mark.asyncio
    async def test_cleanup_forgets_path(self, fake_chrome):
        engine = ChromeHeadlessEngine(chrome_path=fake_chrome)
        await engine.initialize()

        await engine.cleanup()

        assert engine.chrome_path is None


class TestGeneration:
    @pytest.mark.asyncio
    async def test_generates_pdf(self, fake_chrome, output_dir):
        engine = ChromeHeadlessEngine(chrome_path=fake_chrome)
        await engine.initialize()

        result = await engine.generate_pdf(make_context(output_dir), EngineOptions())

        assert result.success is True
        assert result.metadata.engine_used == "chrome-headless"
        assert result.metadata.pages == 2
        assert result.metadata.file_size == (output_dir / "chrome.pdf").stat().st_size
        assert engine.get_metrics().successful_tasks == 1

    @pytest.mark.asyncio
    async def test_initializes_lazily(self, fake_chrome, output_dir):
        engine = ChromeHeadlessEngine(chrome_path=fake_chrome)

        result = await engine.generate_pdf(make_context(output_dir), EngineOptions())

        assert result.success is True
        assert engine.chrome_path == fake_chrome

    @pytest.mark.asyncio
    async def test_applies_metadata(self, fake_chrome, output_dir):
        engine = ChromeHeadlessEngine(chrome_path=fake_chrome)
        context = make_context(output_dir, metadata=DocumentMetadata(title="From Chrome"))

        await engine.generate_pdf(context, EngineOptions())

        assert PdfReader(str(output_dir / "chrome.pdf")).metadata.title == "From Chrome"

    @pytest.mark.asyncio
    async def test_process_failure(self, tmp_path, output_dir):
        path = _write_script(tmp_path / "crashing", body='echo "renderer crashed" >&2; exit 3')
        engine = ChromeHeadlessEngine(chrome_path=path)

        result = await engine.generate_pdf(make_context(output_dir), EngineOptions())

        assert result.success is False
        assert "code 3" in result.error
        assert "renderer crashed" in result.error
        assert engine.get_metrics().failed_tasks == 1

    @pytest.mark.asyncio
    async def test_missing_output(self, tmp_path, output_dir):
        path = _write_script(tmp_path / "silent")
        engine = ChromeHeadlessEngine(chrome_path=path)

        result = await engine.generate_pdf(make_context(output_dir), EngineOptions())

        assert result.success is False
        assert "PDF file was not created" in result.error

    @pytest.mark.asyncio
    async def test_missing_binary_reports_failure(self, tmp_path, output_dir):
        engine = ChromeHeadlessEngine(chrome_path=str(tmp_path / "nonexistent"))

        result = await engine.generate_pdf(make_context(output_dir), EngineOptions())

        assert result.success is False
        assert result.error_type == "EngineGenerationError"


class TestEngineContract:
    @pytest.mark.asyncio
    async def test_can_handle(self, output_dir):
        engine = ChromeHeadlessEngine(chrome_path="/unused")

        assert await engine.can_handle(make_context(output_dir)) is True
        assert await engine.can_handle(make_context(output_dir, toc=TOCConfig(enabled=True))) is False
        assert await engine.can_handle(make_context(output_dir, custom_css="h1 {}")) is True

    @pytest.mark.asyncio
    async def test_health_check(self, fake_chrome, tmp_path):
        healthy = await ChromeHeadlessEngine(chrome_path=fake_chrome).health_check()
        broken = await ChromeHeadlessEngine(chrome_path=str(tmp_path / "nonexistent")).health_check()

        assert healthy.is_healthy is True
        assert healthy.version.startswith("Chromium")
        assert broken.is_healthy is False
        assert broken.errors[0].startswith("Health check failed")

    def test_build_command(self, tmp_path):
        html = tmp_path / "page.html"
        options = EngineOptions(format=PageFormat.LETTER)

        command = ChromeHeadlessEngine.build_command("/usr/bin/chromium", html, "/out/doc.pdf", options)

        assert command[0] == "/usr/bin/chromium"
        assert "--headless" in command
        assert "--print-to-pdf=/out/doc.pdf" in command
        assert "--print-to-pdf-no-header" in command
        assert "--print-to-pdf-paper-size=letter" in command
        assert command[-1] == html.resolve().as_uri()


# A marker that only the hanging fake browser has on its command line.
HANG_SECONDS = "31.7"


def _live_hanging_processes() -> list[int]:
    pids = []
    for proc in psutil.process_iter(["cmdline", "status"]):
        if proc.info["status"] == psutil.STATUS_ZOMBIE:
            continue
        if HANG_SECONDS in (proc.info["cmdline"] or []):
            pids.append(proc.pid)
    return pids


async def _wait_until_no_hanging_processes(timeout: float = 2.0) -> list[int]:
    deadline = asyncio.get_running_loop().time() + timeout
    while (pids := _live_hanging_processes()) and asyncio.get_running_loop().time() < deadline:
        await asyncio.sleep(0.05)
    return pids


@pytest.fixture
def hanging_chrome(tmp_path):
    return _write_script(tmp_path / "hanging", body=f"sleep {HANG_SECONDS}")


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_generation_kills_browser(self, hanging_chrome, output_dir):
        engine = ChromeHeadlessEngine(chrome_path=hanging_chrome)
        await engine.initialize()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(engine.generate_pdf(make_context(output_dir), EngineOptions()), 0.3)

        assert await _wait_until_no_hanging_processes() == []
        metrics = engine.get_metrics()
        assert metrics.total_tasks == 1
        assert metrics.failed_tasks == 1
        assert metrics.last_failure.error == "Generation cancelled"
        assert (await engine.get_resource_usage()).active_tasks == 0

    @pytest.mark.asyncio
    async def test_manager_timeout_kills_browser(self, hanging_chrome, output_dir):
        factory = EngineFactory()
        factory.register_engine("chrome-headless", lambda: ChromeHeadlessEngine(chrome_path=hanging_chrome))
        config = EngineManagerConfig(
            primary_engine="chrome-headless",
            fallback_engines=[],
            health_check_interval=0,
            max_retries=1,
            retry_delay=0,
            resource_limits=ResourceLimits(task_timeout=300),
        )

        async with EngineManager(config, factory, PrimaryFirstSelectionStrategy()) as manager:
            result = await manager.generate_pdf(make_context(output_dir))

            assert result.success is False
            assert "timeout" in result.error
            assert await _wait_until_no_hanging_processes() == []
            metrics = manager.get_engine_metrics()["chrome-headless"]
            assert metrics.total_tasks == metrics.successful_tasks + metrics.failed_tasks

    @pytest.mark.asyncio
    async def test_cleanup_kills_running_browser(self, hanging_chrome, output_dir):
        engine = ChromeHeadlessEngine(chrome_path=hanging_chrome)
        await engine.initialize()
        task = asyncio.create_task(engine.generate_pdf(make_context(output_dir), EngineOptions()))
        await asyncio.sleep(0.3)

        await engine.cleanup()
        result = await task

        assert result.success is False
        assert await _wait_until_no_hanging_processes() == []
