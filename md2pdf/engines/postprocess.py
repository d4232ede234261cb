"""PDF post-processing with pypdf: metadata, password protection, page count."""

from __future__ import annotations

import io
from datetime import datetime

from pypdf import PdfReader, PdfWriter
from pypdf.constants import UserAccessPermissions

from md2pdf.engines.models import DocumentMetadata, PasswordProtection, PdfPermissions, utcnow
from md2pdf.utils.logging import get_logger

logger = get_logger(__name__)

PDF_CREATOR = "MD2PDF"
PDF_PRODUCER = "MD2PDF with pypdf"


def count_pages(pdf_bytes: bytes) -> int:
    """Number of pages in *pdf_bytes*, or 1 if the document cannot be read."""
    try:
        return max(1, len(PdfReader(io.BytesIO(pdf_bytes)).pages))
    except Exception as exc:
        logger.debug("page_count_failed", error=str(exc))
        return 1


def _pdf_date(value: datetime) -> str:
    return value.strftime("D:%Y%m%d%H%M%S") + "Z"


def _permission_flags(permissions: PdfPermissions) -> UserAccessPermissions:
    flags = UserAccessPermissions(0)
    if permissions.printing:
        flags |= UserAccessPermissions.PRINT | UserAccessPermissions.PRINT_TO_REPRESENTATION
    if permissions.modifying:
        flags |= UserAccessPermissions.MODIFY
    if permissions.copying:
        flags |= UserAccessPermissions.EXTRACT
    if permissions.annotating:
        flags |= UserAccessPermissions.ADD_OR_MODIFY
    if permissions.filling_forms:
        flags |= UserAccessPermissions.FILL_FORM_FIELDS
    if permissions.content_accessibility:
        flags |= UserAccessPermissions.EXTRACT_TEXT_AND_GRAPHICS
    if permissions.document_assembly:
        flags |= UserAccessPermissions.ASSEMBLE_DOC
    return flags


def build_metadata(metadata: DocumentMetadata) -> dict[str, str]:
    """Translate document metadata into a PDF info dictionary."""
    now = utcnow()
    info: dict[str, str] = {
        "/Creator": PDF_CREATOR,
        "/Producer": PDF_PRODUCER,
        "/CreationDate": _pdf_date(metadata.creation_date or now),
        "/ModDate": _pdf_date(metadata.mod_date or now),
    }
    if metadata.title:
        info["/Title"] = metadata.title
    if metadata.author:
        info["/Author"] = metadata.author
    if metadata.subject:
        info["/Subject"] = metadata.subject
    if metadata.keywords:
        info["/Keywords"] = ", ".join(k.strip() for k in metadata.keywords.split(","))
    return info


def needs_postprocessing(
    metadata: DocumentMetadata | None,
    protection: PasswordProtection | None,
) -> bool:
    has_password = protection is not None and bool(
        protection.user_password or protection.owner_password
    )
    return metadata is not None or has_password


def postprocess_pdf(
    pdf_bytes: bytes,
    metadata: DocumentMetadata | None = None,
    protection: PasswordProtection | None = None,
) -> bytes:
    """Return *pdf_bytes* with metadata applied and, if requested, encrypted.

    Raises whatever pypdf raises; callers decide whether to fall back to the
    unprocessed document.
    """
    writer = PdfWriter(clone_from=PdfReader(io.BytesIO(pdf_bytes)))

    if metadata is not None:
        writer.add_metadata(build_metadata(metadata))

    if protection is not None and (protection.user_password or protection.owner_password):
        user_password = protection.user_password or ""
        owner_password = protection.owner_password or protection.user_password
        writer.encrypt(
            user_password=user_password,
            owner_password=owner_password,
            permissions_flag=_permission_flags(protection.permissions),
            algorithm="AES-256",
        )

    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()
