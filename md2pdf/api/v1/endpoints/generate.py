"""PDF generation endpoint -- hands one HTML document to the engine manager."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends

from md2pdf.api.v1.schemas.common import ErrorResponse
from md2pdf.api.v1.schemas.generate import GenerateRequest
from md2pdf.dependencies import get_engine_manager, get_output_dir
from md2pdf.engines.manager import EngineManager
from md2pdf.engines.models import EngineResult, GenerationContext
from md2pdf.utils.file_utils import generate_filename, safe_filename
from md2pdf.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _output_path(output_dir: Path, filename: str) -> Path:
    name = safe_filename(Path(filename).name) if filename else ""
    if not name:
        name = generate_filename("document", "pdf")
    elif not name.lower().endswith(".pdf"):
        name = f"{name}.pdf"
    return output_dir / name


@router.post(
    "/generate",
    response_model=EngineResult,
    responses={422: {"model": ErrorResponse, "description": "Invalid request"}},
    summary="Generate a PDF",
    description=(
        "Render HTML content to a PDF in the output directory.  The engine "
        "manager selects an engine, retries and fails over as configured; "
        "failures are reported in the result body, not as HTTP errors."
    ),
)
async def generate_pdf(
    request: GenerateRequest,
    manager: EngineManager = Depends(get_engine_manager),
    output_dir: Path = Depends(get_output_dir),
) -> EngineResult:
    context = GenerationContext(
        html_content=request.html_content,
        output_path=str(_output_path(output_dir, request.filename)),
        title=request.title,
        custom_css=request.custom_css,
        enable_chinese_support=request.enable_chinese_support,
        metadata=request.metadata,
        toc=request.toc,
        bookmarks=request.bookmarks,
        pdf_options=request.pdf_options,
        password_protection=request.password_protection,
    )

    result = await manager.generate_pdf(context, request.options)
    if result.success:
        logger.info(
            "pdf_generated",
            output_path=result.output_path,
            engine=result.metadata.engine_used if result.metadata else None,
        )
    else:
        logger.warning("pdf_generation_failed", error=result.error, error_type=result.error_type)
    return result
