"""Request schema for the PDF generation endpoint."""

from pydantic import BaseModel, Field

from md2pdf.engines.models import (
    BookmarkConfig,
    DocumentMetadata,
    EngineOptions,
    PasswordProtection,
    PdfOptions,
    TOCConfig,
)


class GenerateRequest(BaseModel):
    """Request body for a single HTML-to-PDF conversion."""

    html_content: str = Field(..., min_length=1, description="HTML body to render")
    filename: str = Field(
        default="",
        description="Output file name inside the output directory; generated when empty",
    )
    title: str | None = Field(default=None, description="Document title")
    custom_css: str | None = Field(default=None, description="Extra CSS appended to the base styles")
    enable_chinese_support: bool = False
    metadata: DocumentMetadata | None = None
    toc: TOCConfig | None = None
    bookmarks: BookmarkConfig | None = None
    pdf_options: PdfOptions | None = None
    password_protection: PasswordProtection | None = None
    options: EngineOptions = Field(default_factory=EngineOptions, description="Page layout")
