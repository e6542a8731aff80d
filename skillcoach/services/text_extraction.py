"""
Document text extraction.

Contract: `extract_text(path) -> str`. Unsupported or unreadable files yield "",
never an exception; callers treat "" as "nothing to parse".
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List

import docx
import fitz  # PyMuPDF

from skillcoach.utils.observability import log_event

logger = logging.getLogger(__name__)


def normalize_text(raw: str) -> str:
    """Canonical form for the parser: unix newlines, no NULs, trimmed."""
    s = str(raw or "")
    s = s.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    return s.strip()


def _extract_pdf(path: Path) -> str:
    pages: List[str] = []
    with fitz.open(str(path)) as doc:
        for page in doc:
            pages.append(page.get_text("text") or "")
    return "\n".join(pages)


def _extract_docx(path: Path) -> str:
    document = docx.Document(str(path))
    lines = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            for cell in row.cells:
                lines.append(cell.text)
    return "\n".join(lines)


def _extract_plain(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


_EXTRACTORS: Dict[str, Callable[[Path], str]] = {
    ".pdf": _extract_pdf,
    ".docx": _extract_docx,
    ".txt": _extract_plain,
    ".md": _extract_plain,
}

SUPPORTED_SUFFIXES = tuple(sorted(_EXTRACTORS))


def extract_text(file_path: str | Path) -> str:
    path = Path(file_path)
    suffix = path.suffix.lower()
    extractor = _EXTRACTORS.get(suffix)
    if extractor is None:
        log_event(
            logger,
            "text_extraction_unsupported",
            level="warning",
            file_name=path.name,
            suffix=suffix,
        )
        return ""
    try:
        text = normalize_text(extractor(path))
    except Exception as e:
        log_event(
            logger,
            "text_extraction_failed",
            level="warning",
            file_name=path.name,
            error_type=e.__class__.__name__,
            error=str(e),
        )
        return ""
    log_event(logger, "text_extracted", file_name=path.name, chars=len(text))
    return text
