"""Pure-Python PDF engine: HTML body -> ReportLab platypus flowables.

Handles:
- h1-h6 -> headings (and outline entries when bookmarks are enabled)
- p, blockquote -> paragraphs
- ul / ol -> bullet / numbered items
- table -> styled table
- pre -> code block
- div / article / section / ... -> recurse into children
"""

from __future__ import annotations

import asyncio
import io
import re
import time
from importlib import metadata as importlib_metadata

import aiofiles
from bs4 import BeautifulSoup, NavigableString, Tag
from reportlab.lib import colors as rl_colors
from reportlab.lib import pagesizes
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm, inch, mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from md2pdf.engines.base import BaseEngine
from md2pdf.engines.metrics import EngineMetricsRecorder
from md2pdf.engines.models import (
    EngineCapabilities,
    EngineMetrics,
    EngineOptions,
    EngineResult,
    GenerationContext,
    HealthStatus,
    Orientation,
    PageFormat,
    PageMargin,
    ResourceUsage,
    ResultMetadata,
)
from md2pdf.engines.postprocess import count_pages, needs_postprocessing, postprocess_pdf
from md2pdf.utils.exceptions import EngineGenerationError
from md2pdf.utils.file_utils import ensure_parent_dir, resolve_pdf_path
from md2pdf.utils.logging import get_logger

COLORS = {
    "primary": "2B579A",
    "text": "333333",
    "muted": "666666",
    "table_header": "2B579A",
    "table_alt_row": "F2F2F2",
    "border": "CCCCCC",
    "code_bg": "F5F5F5",
}

LATIN_FONTS = {"title": "Helvetica-Bold", "body": "Helvetica", "code": "Courier"}
CJK_FONT = "STSong-Light"

PAGE_SIZES = {
    PageFormat.A3: pagesizes.A3,
    PageFormat.A4: pagesizes.A4,
    PageFormat.A5: pagesizes.A5,
    PageFormat.LETTER: pagesizes.LETTER,
    PageFormat.LEGAL: pagesizes.LEGAL,
}

_UNITS = {"in": inch, "mm": mm, "cm": cm, "pt": 1.0, "px": 0.75}
_LENGTH_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(in|mm|cm|pt|px)?\s*$")
_CONTAINERS = ("div", "article", "section", "main", "header", "footer", "nav", "body")
_DEFAULT_MARGIN = PageMargin()


def _hex_to_rl_color(hex_color: str) -> rl_colors.Color:
    hex_color = hex_color.lstrip("#")
    r = int(hex_color[0:2], 16) / 255.0
    g = int(hex_color[2:4], 16) / 255.0
    b = int(hex_color[4:6], 16) / 255.0
    return rl_colors.Color(r, g, b)


def css_length_to_points(value: str, default: float = inch) -> float:
    """Convert a CSS length such as ``"20mm"`` or ``"1in"`` to points.

    Unitless numbers are treated as pixels, matching browser behaviour.
    Unparseable values fall back to *default*.
    """
    match = _LENGTH_RE.match(value or "")
    if not match:
        return default
    number, unit = match.groups()
    return float(number) * _UNITS[unit or "px"]


def page_size_for(options: EngineOptions) -> tuple[float, float]:
    size = PAGE_SIZES.get(options.format, pagesizes.A4)
    if options.orientation == Orientation.LANDSCAPE:
        return pagesizes.landscape(size)
    return pagesizes.portrait(size)


def _escape(text: str) -> str:
    """Escape text for use in ReportLab Paragraphs (basic XML entities)."""
    text = text.replace("&", "&amp;")
    text = text.replace("<", "&lt;")
    text = text.replace(">", "&gt;")
    return text


def _ensure_cjk_font() -> str:
    if CJK_FONT not in pdfmetrics.getRegisteredFontNames():
        pdfmetrics.registerFont(UnicodeCIDFont(CJK_FONT))
    return CJK_FONT


def _build_styles(fonts: dict[str, str]) -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    primary = _hex_to_rl_color(COLORS["primary"])
    text = _hex_to_rl_color(COLORS["text"])

    styles: dict[str, ParagraphStyle] = {}
    heading_sizes = {1: (22, 28, 16), 2: (18, 23, 13), 3: (15, 19, 11), 4: (13, 17, 9), 5: (12, 15, 8), 6: (11, 14, 8)}
    for level, (size, leading, space_before) in heading_sizes.items():
        styles[f"Heading{level}"] = ParagraphStyle(
            f"MdHeading{level}",
            parent=base[f"Heading{level}"],
            fontName=fonts["title"],
            fontSize=size,
            leading=leading,
            textColor=primary,
            spaceBefore=space_before,
            spaceAfter=max(4, space_before // 2),
        )

    styles["Title"] = ParagraphStyle(
        "MdTitle",
        parent=base["Title"],
        fontName=fonts["title"],
        fontSize=26,
        leading=32,
        alignment=TA_CENTER,
        textColor=primary,
        spaceAfter=18,
    )
    styles["BodyText"] = ParagraphStyle(
        "MdBody",
        parent=base["Normal"],
        fontName=fonts["body"],
        fontSize=11,
        leading=15,
        textColor=text,
        spaceAfter=6,
    )
    styles["Quote"] = ParagraphStyle(
        "MdQuote",
        parent=styles["BodyText"],
        leftIndent=18,
        textColor=_hex_to_rl_color(COLORS["muted"]),
    )
    styles["ListItem"] = ParagraphStyle(
        "MdListItem",
        parent=styles["BodyText"],
        leftIndent=20,
        spaceAfter=3,
    )
    styles["Code"] = ParagraphStyle(
        "MdCode",
        parent=base["Code"],
        fontName=fonts["code"],
        fontSize=9,
        leading=12,
        textColor=text,
        backColor=_hex_to_rl_color(COLORS["code_bg"]),
        leftIndent=12,
        rightIndent=12,
        spaceBefore=6,
        spaceAfter=6,
        borderPadding=6,
    )
    styles["TableCell"] = ParagraphStyle(
        "MdTableCell",
        fontName=fonts["body"],
        fontSize=9,
        leading=12,
        textColor=text,
    )
    styles["TableHeader"] = ParagraphStyle(
        "MdTableHeader",
        fontName=fonts["title"],
        fontSize=10,
        leading=13,
        textColor=rl_colors.white,
        alignment=TA_CENTER,
    )
    return styles


def _add_page_number(canvas, doc):
    """Draw the page number at the bottom centre of every page."""
    canvas.saveState()
    canvas.setFont("Helvetica", 9)
    canvas.setFillColor(_hex_to_rl_color("999999"))
    canvas.drawCentredString(doc.pagesize[0] / 2.0, 10 * mm, f"- {canvas.getPageNumber()} -")
    canvas.restoreState()


class _OutlineDocTemplate(SimpleDocTemplate):
    """Adds a PDF outline entry for every flowable tagged with ``outline_entry``."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._outline_count = 0

    def afterFlowable(self, flowable):
        entry = getattr(flowable, "outline_entry", None)
        if entry is None:
            return
        title, level = entry
        key = f"h{self._outline_count}"
        self._outline_count += 1
        self.canv.bookmarkPage(key)
        self.canv.addOutlineEntry(title, key, level=level, closed=False)


class HtmlFlowableBuilder:
    """Walk an HTML fragment and emit platypus flowables."""

    def __init__(
        self,
        styles: dict[str, ParagraphStyle],
        content_width: float,
        outline_depth: int = 0,
    ) -> None:
        self.styles = styles
        self.content_width = content_width
        self.outline_depth = outline_depth
        self._last_outline_level = -1

    def build(self, html: str) -> list:
        soup = BeautifulSoup(html, "html.parser")
        root = soup.body if soup.body else soup
        story: list = []
        self._walk(root, story)
        return story

    def _walk(self, element: Tag, story: list) -> None:
        for child in element.children:
            if isinstance(child, NavigableString):
                text = child.strip()
                if text:
                    story.append(Paragraph(_escape(text), self.styles["BodyText"]))
                continue
            if not isinstance(child, Tag):
                continue

            tag = child.name.lower() if child.name else ""
            if tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
                self._heading(story, child.get_text(" ", strip=True), int(tag[1]))
            elif tag == "p":
                self._paragraph(story, child, self.styles["BodyText"])
            elif tag == "blockquote":
                self._paragraph(story, child, self.styles["Quote"])
            elif tag == "ul":
                self._list(story, child, ordered=False)
            elif tag == "ol":
                self._list(story, child, ordered=True)
            elif tag == "table":
                self._table(story, child)
            elif tag == "pre":
                code_tag = child.find("code")
                self._code(story, (code_tag or child).get_text())
            elif tag == "hr":
                story.append(Spacer(1, 12))
            elif tag in _CONTAINERS:
                self._walk(child, story)
            elif tag in ("script", "style", "head", "title"):
                continue
            else:
                self._paragraph(story, child, self.styles["BodyText"])

    # ------------------------------------------------------------------
    # Block renderers
    # ------------------------------------------------------------------

    def _heading(self, story: list, text: str, level: int) -> None:
        if not text:
            return
        para = Paragraph(_escape(text), self.styles[f"Heading{level}"])
        if level <= self.outline_depth:
            # Outline levels may only deepen one step at a time.
            outline_level = min(level - 1, self._last_outline_level + 1)
            self._last_outline_level = outline_level
            para.outline_entry = (text, outline_level)
        story.append(para)

    def _paragraph(self, story: list, element: Tag, style: ParagraphStyle) -> None:
        text = element.get_text(" ", strip=True)
        if text:
            story.append(Paragraph(_escape(text), style))

    def _list(self, story: list, element: Tag, ordered: bool) -> None:
        items = [li.get_text(" ", strip=True) for li in element.find_all("li", recursive=False)]
        for idx, item in enumerate(items, start=1):
            marker = f"{idx}." if ordered else "•"
            story.append(Paragraph(f"{marker}  {_escape(item)}", self.styles["ListItem"]))
        if items:
            story.append(Spacer(1, 4))

    def _code(self, story: list, code: str) -> None:
        if not code.strip():
            return
        escaped = _escape(code.rstrip("\n")).replace(" ", "&nbsp;").replace("\n", "<br/>")
        story.append(Paragraph(escaped, self.styles["Code"]))

    def _table(self, story: list, table: Tag) -> None:
        rows: list[list[str]] = []
        for tr in table.find_all("tr"):
            cells = [cell.get_text(" ", strip=True) for cell in tr.find_all(["th", "td"])]
            if cells:
                rows.append(cells)
        if not rows:
            return

        max_cols = max(len(r) for r in rows)
        table_data = []
        for row_idx, row in enumerate(rows):
            style = self.styles["TableHeader"] if row_idx == 0 else self.styles["TableCell"]
            cells = [Paragraph(_escape(value), style) for value in row]
            cells.extend(Paragraph("", self.styles["TableCell"]) for _ in range(max_cols - len(row)))
            table_data.append(cells)

        tbl = Table(table_data, colWidths=[self.content_width / max_cols] * max_cols, repeatRows=1)
        style_commands = [
            ("BACKGROUND", (0, 0), (-1, 0), _hex_to_rl_color(COLORS["table_header"])),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("GRID", (0, 0), (-1, -1), 0.5, _hex_to_rl_color(COLORS["border"])),
            ("TOPPADDING", (0, 0), (-1, -1), 4),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ("LEFTPADDING", (0, 0), (-1, -1), 6),
            ("RIGHTPADDING", (0, 0), (-1, -1), 6),
        ]
        for row_idx in range(2, len(table_data), 2):
            style_commands.append(
                ("BACKGROUND", (0, row_idx), (-1, row_idx), _hex_to_rl_color(COLORS["table_alt_row"]))
            )
        tbl.setStyle(TableStyle(style_commands))
        story.append(tbl)
        story.append(Spacer(1, 8))


def _reportlab_version() -> str:
    try:
        return importlib_metadata.version("reportlab")
    except importlib_metadata.PackageNotFoundError:
        return "unknown"


class ReportLabEngine(BaseEngine):
    """Render simple HTML documents without a browser.

    Layout is ReportLab's, not the browser's: custom CSS and header/footer
    templates are ignored, so contexts that need them are declined.
    """

    name = "reportlab"

    def __init__(self) -> None:
        self.version = _reportlab_version()
        self.capabilities = EngineCapabilities(
            max_concurrent_jobs=4,
            supports_custom_css=False,
            supports_chinese_text=True,
            supports_toc=False,
            supports_header_footer=False,
            supports_bookmarks=True,
            supports_outline_generation=True,
        )
        self.logger = get_logger("engines.reportlab")
        self._recorder = EngineMetricsRecorder(self.name)
        self._active_tasks = 0

    async def initialize(self) -> None:
        # Nothing to launch.
        return None

    async def cleanup(self) -> None:
        return None

    def render(self, context: GenerationContext, options: EngineOptions) -> bytes:
        """Build the PDF synchronously and return its bytes."""
        if context.enable_chinese_support:
            cjk = _ensure_cjk_font()
            fonts = {"title": cjk, "body": cjk, "code": LATIN_FONTS["code"]}
        else:
            fonts = dict(LATIN_FONTS)
        styles = _build_styles(fonts)

        margin = options.margin or _DEFAULT_MARGIN
        page_size = page_size_for(options)
        left = css_length_to_points(margin.left)
        right = css_length_to_points(margin.right)

        outline_depth = 0
        if context.bookmarks is not None and context.bookmarks.enabled:
            outline_depth = context.bookmarks.max_depth

        meta = context.metadata
        buf = io.BytesIO()
        doc = _OutlineDocTemplate(
            buf,
            pagesize=page_size,
            leftMargin=left,
            rightMargin=right,
            topMargin=css_length_to_points(margin.top),
            bottomMargin=css_length_to_points(margin.bottom),
            title=(meta.title if meta and meta.title else context.title) or "",
            author=(meta.author if meta else None) or "",
            subject=(meta.subject if meta else None) or "",
        )

        builder = HtmlFlowableBuilder(styles, page_size[0] - left - right, outline_depth)
        story = builder.build(context.html_content)
        if not story:
            story.append(Spacer(1, 1))

        doc.build(story, onFirstPage=_add_page_number, onLaterPages=_add_page_number)
        return buf.getvalue()

    async def generate_pdf(
        self,
        context: GenerationContext,
        options: EngineOptions,
    ) -> EngineResult:
        start = time.perf_counter()
        self._active_tasks += 1
        self._recorder.record_start()

        try:
            output_path = resolve_pdf_path(context.output_path)
            ensure_parent_dir(output_path)

            pdf_bytes = await asyncio.to_thread(self.render, context, options)
            if needs_postprocessing(context.metadata, context.password_protection):
                pdf_bytes = postprocess_pdf(
                    pdf_bytes, context.metadata, context.password_protection
                )

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

    async def health_check(self) -> HealthStatus:
        errors: list[str] = []
        probe = GenerationContext(html_content="<h1>Health Check</h1>", output_path="health.pdf")
        try:
            pdf_bytes = await asyncio.to_thread(self.render, probe, EngineOptions())
            if not pdf_bytes.startswith(b"%PDF-"):
                errors.append("Renderer produced invalid output")
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
        if context.toc is not None and context.toc.enabled:
            return False
        return not context.custom_css

    def get_metrics(self) -> EngineMetrics:
        return self._recorder.snapshot()
