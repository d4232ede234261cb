import os
import uuid
from pathlib import Path


def ensure_dir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def ensure_parent_dir(path: str | Path) -> Path:
    p = Path(path)
    ensure_dir(p.parent)
    return p


def generate_filename(prefix: str, extension: str) -> str:
    short_id = uuid.uuid4().hex[:8]
    return f"{prefix}_{short_id}.{extension}"


def get_file_size(path: str | Path) -> int:
    return os.path.getsize(path)


def safe_filename(name: str) -> str:
    keepchars = (" ", ".", "_", "-")
    return "".join(c for c in name if c.isalnum() or c in keepchars).strip()


def resolve_pdf_path(output_path: str) -> Path:
    """Return the absolute output path, rejecting anything that is not a .pdf file."""
    resolved = Path(output_path).resolve()
    if resolved.suffix.lower() != ".pdf":
        raise ValueError("Output path must end with .pdf extension")
    return resolved
