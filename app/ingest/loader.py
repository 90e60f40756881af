# Knowledge file loader: raw upload bytes -> text. No chunking, no embeddings.
# Supports .txt, .pdf, .xlsx, .xls.

import io
from pathlib import Path

from app.core.config import ALLOWED_EXTENSIONS
from app.core.errors import InvalidFileTypeError


def ensure_supported(filename: str) -> str:
    """Return the lower-cased extension or raise InvalidFileTypeError."""
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidFileTypeError([filename or "unnamed"])
    return ext


def bytes_to_text(raw: bytes, filename: str) -> str:
    """Convert raw file bytes to text by extension."""
    ext = ensure_supported(filename)
    if ext == ".pdf":
        return _read_pdf(raw)
    if ext in (".xlsx", ".xls"):
        return _read_excel(raw)
    return raw.decode("utf-8", errors="replace")


def _read_pdf(raw: bytes) -> str:
    from pypdf import PdfReader
    reader = PdfReader(io.BytesIO(raw))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def _read_excel(raw: bytes) -> str:
    import pandas as pd
    sheets = pd.read_excel(io.BytesIO(raw), sheet_name=None, header=None)
    return "\n\n".join(
        df.astype(str).to_csv(sep=" ", index=False, header=False) for df in sheets.values()
    )
