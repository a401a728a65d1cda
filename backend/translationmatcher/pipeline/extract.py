"""Content extraction: file bytes -> normalized plain text.

Normalization is deterministic so identical bytes always produce identical
text: hyphenated line-end breaks are joined, every whitespace run (newlines
included) collapses to one space, and the ends are trimmed.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from translationmatcher.errors import ExtractionError

logger = logging.getLogger(__name__)

_hyphen_break_re = re.compile(r"-[ \t]*\n[ \t]*")
_whitespace_re = re.compile(r"\s+")

MIN_TEXT_CHARS = 50


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    page_count: int
    low_text_warning: bool = False


def normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _hyphen_break_re.sub("", text)
    text = _whitespace_re.sub(" ", text)
    return text.strip()


def extract_pdf_pages(pdf_path: Path) -> list[str]:
    reader = PdfReader(str(pdf_path))
    return [page.extract_text() or "" for page in reader.pages]


def _read_plain_text(path: Path) -> list[str]:
    raw = path.read_bytes()
    try:
        return [raw.decode("utf-8")]
    except UnicodeDecodeError:
        # 19th-century transcriptions often arrive as Latin-1
        return [raw.decode("latin-1")]


def extract_document(path: Path, *, min_text_chars: int = MIN_TEXT_CHARS) -> ExtractionResult:
    """Extract normalized text from a PDF or plain-text file.

    Raises:
        ExtractionError: the file is missing, unreadable or not parseable.
    """
    suffix = path.suffix.lower()
    try:
        if suffix == ".pdf":
            pages = extract_pdf_pages(path)
        elif suffix == ".txt":
            pages = _read_plain_text(path)
        else:
            raise ExtractionError(path, f"unsupported file type {suffix or '(none)'}")
    except ExtractionError:
        raise
    except (PyPdfError, OSError, ValueError, KeyError, TypeError) as e:
        raise ExtractionError(path, str(e) or type(e).__name__) from e

    # Pages are joined before normalizing so a hyphen at a page end still joins.
    text = normalize_text("\n".join(pages))
    page_count = len(pages)
    low_text = page_count > 0 and len(text) < min_text_chars
    if low_text:
        logger.warning("%s has little extractable text (%d chars); OCR may be needed", path, len(text))
    return ExtractionResult(text=text, page_count=page_count, low_text_warning=low_text)
