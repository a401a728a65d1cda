"""Manifest-driven article segmentation.

A target-corpus manifest is a workbook whose rows describe articles. One
column per sheet names the file an article lives in; several rows may point
to the same file (multi-article periodical issues). Rows are joined to the
discovered files by normalized base filename, each file is extracted once,
and one Article is emitted per row.
"""
from __future__ import annotations

import csv
import logging
import re
import unicodedata
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from openpyxl import load_workbook

from translationmatcher.db import DocumentRow
from translationmatcher.errors import ExtractionError, ManifestReadError, ManifestReferenceError

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown"

# Header variants seen in Portuguese, French, Spanish and English manifests.
TITLE_ALIASES = (
    "title",
    "titulo",
    "titre",
    "article",
    "artigo",
    "article title",
    "titulo do artigo",
    "titre de l'article",
)
PAGE_ALIASES = (
    "pages",
    "page",
    "paginas",
    "pagina",
    "pp",
    "page range",
    "folios",
    "fls",
)
FILENAME_ALIASES = (
    "file",
    "filename",
    "file name",
    "arquivo",
    "nome do arquivo",
    "fichier",
    "nom du fichier",
    "pdf",
)

# Suffixes stripped when joining manifest cells to discovered files
DOCUMENT_EXTENSIONS = (".pdf", ".txt", ".doc", ".docx")


@dataclass(frozen=True)
class ManifestSheet:
    name: str
    columns: list[str]
    rows: list[dict[str, Any]]


@dataclass(frozen=True)
class Manifest:
    path: Path
    sheets: list[ManifestSheet]

    def sheet(self, name: str) -> ManifestSheet | None:
        for s in self.sheets:
            if s.name == name:
                return s
        return None


@dataclass(frozen=True)
class Article:
    """One manifest row joined to the document that contains it."""

    title: str
    document: DocumentRow
    page_range: str | None
    sheet: str
    row_number: int
    manifest_row: dict[str, Any]

    @property
    def full_text(self) -> str:
        return self.document.extracted_text or ""

    @property
    def ref(self) -> str:
        ref = f"{self.document.display_name}#{self.sheet}:{self.row_number}"
        if self.page_range:
            ref += f" p.{self.page_range}"
        return ref


@dataclass
class SegmentationReport:
    articles: list[Article] = field(default_factory=list)
    unmatched: list[ManifestReferenceError] = field(default_factory=list)
    failed_files: list[ExtractionError] = field(default_factory=list)
    stopped: bool = False


def normalize_filename(name: str, *, extensions: Sequence[str] = DOCUMENT_EXTENSIONS) -> str:
    """Base filename, lower-cased, with a known document extension stripped.

    ``"scans\\GMP1833.pdf"`` and ``"gmp1833.PDF"`` both become ``"gmp1833"``;
    ``"O.Globo.1833"`` keeps its dotted stem.
    """
    base = re.split(r"[\\/]", str(name).strip())[-1].strip().lower()
    for ext in extensions:
        if base.endswith(ext.lower()):
            return base[: -len(ext)]
    return base


def _fold(header: str) -> str:
    decomposed = unicodedata.normalize("NFKD", str(header))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped).strip().lower()


def pick_field(row: dict[str, Any], aliases: Sequence[str]) -> str | None:
    """Return the first non-empty value whose header matches an alias."""
    folded = {_fold(k): v for k, v in row.items() if k is not None}
    for alias in aliases:
        value = folded.get(alias)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def suggest_filename_column(columns: Sequence[str]) -> str | None:
    """Best guess at the column holding file references, by header name."""
    folded = {_fold(c): c for c in columns}
    for alias in FILENAME_ALIASES:
        if alias in folded:
            return folded[alias]
    return None


def _cell_to_value(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _rows_from_grid(grid: Iterable[Sequence[Any]]) -> tuple[list[str], list[dict[str, Any]]]:
    it = iter(grid)
    try:
        header_row = next(it)
    except StopIteration:
        return [], []
    columns = [str(h).strip() if h is not None else "" for h in header_row]
    rows: list[dict[str, Any]] = []
    for raw in it:
        values = [_cell_to_value(v) for v in raw]
        if all(v is None or str(v).strip() == "" for v in values):
            continue
        row = {col: values[i] if i < len(values) else None for i, col in enumerate(columns) if col}
        rows.append(row)
    return [c for c in columns if c], rows


def read_manifest(path: Path) -> Manifest:
    """Load every sheet of an .xlsx workbook (or a single-sheet .csv).

    Raises:
        ManifestReadError: the file is missing or cannot be parsed.
    """
    if not path.exists():
        raise ManifestReadError(f"Manifest not found: {path}")

    suffix = path.suffix.lower()
    sheets: list[ManifestSheet] = []
    try:
        if suffix == ".csv":
            with path.open("r", encoding="utf-8-sig", newline="") as f:
                columns, rows = _rows_from_grid(csv.reader(f))
            sheets.append(ManifestSheet(name=path.stem, columns=columns, rows=rows))
        elif suffix in {".xlsx", ".xlsm"}:
            workbook = load_workbook(path, read_only=True, data_only=True)
            try:
                for ws in workbook.worksheets:
                    columns, rows = _rows_from_grid(ws.iter_rows(values_only=True))
                    sheets.append(ManifestSheet(name=ws.title, columns=columns, rows=rows))
            finally:
                workbook.close()
        else:
            raise ManifestReadError(f"Unsupported manifest format: {path.name}")
    except ManifestReadError:
        raise
    except Exception as e:  # noqa: BLE001
        raise ManifestReadError(f"Could not read manifest {path}: {e}") from e

    return Manifest(path=path, sheets=sheets)


def index_files(folder: Path, *, suffixes: Sequence[str] = (".pdf", ".txt")) -> dict[str, Path]:
    """Map normalized base filename -> path for every corpus file under folder."""
    index: dict[str, Path] = {}
    for path in scan_corpus_files(folder, suffixes=suffixes):
        key = normalize_filename(path.name, extensions=(*DOCUMENT_EXTENSIONS, *suffixes))
        if key in index:
            logger.warning("Duplicate file name %s (keeping %s)", path, index[key])
            continue
        index[key] = path
    return index


def scan_corpus_files(folder: Path, *, suffixes: Sequence[str] = (".pdf", ".txt")) -> list[Path]:
    """Recursively list corpus files in a stable (sorted) order."""
    if not folder.is_dir():
        logger.warning("Directory not found: %s", folder)
        return []
    wanted = {s.lower() for s in suffixes}
    return sorted(p for p in folder.rglob("*") if p.is_file() and p.suffix.lower() in wanted)


@dataclass(frozen=True)
class _RowRef:
    sheet: str
    row_number: int
    row: dict[str, Any]


class ManifestSegmenter:
    """Joins manifest rows to discovered files and emits Articles.

    ``resolve`` turns a discovered path into an extracted document (usually
    ``ExtractionCache.get_or_extract``); it is called once per file.
    """

    def __init__(
        self,
        file_index: dict[str, Path],
        resolve: Callable[[Path], DocumentRow],
        *,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> None:
        self._file_index = file_index
        self._resolve = resolve
        self._should_stop = should_stop

    def group_rows(
        self, manifest: Manifest, sheet_columns: Sequence[tuple[str, str]]
    ) -> dict[str, list[_RowRef]]:
        """Group rows of the selected sheets by normalized filename reference.

        Row numbers are 1-based spreadsheet rows (the header is row 1).
        """
        groups: dict[str, list[_RowRef]] = {}
        for sheet_name, column in sheet_columns:
            sheet = manifest.sheet(sheet_name)
            if sheet is None:
                logger.warning("Sheet %r not found in %s", sheet_name, manifest.path.name)
                continue
            for i, row in enumerate(sheet.rows, start=2):
                cell = row.get(column)
                if cell is None or not str(cell).strip():
                    continue
                key = normalize_filename(str(cell))
                if not key:
                    continue
                groups.setdefault(key, []).append(_RowRef(sheet=sheet_name, row_number=i, row=row))
        return groups

    def segment(self, manifest: Manifest, sheet_columns: Sequence[tuple[str, str]]) -> SegmentationReport:
        report = SegmentationReport()
        groups = self.group_rows(manifest, sheet_columns)

        for key, refs in groups.items():
            if self._should_stop():
                report.stopped = True
                break

            path = self._file_index.get(key)
            if path is None:
                for ref in refs:
                    report.unmatched.append(ManifestReferenceError(ref.sheet, ref.row_number, key))
                continue

            try:
                document = self._resolve(path)
            except ExtractionError as e:
                report.failed_files.append(e)
                continue

            for ref in refs:
                report.articles.append(
                    Article(
                        title=pick_field(ref.row, TITLE_ALIASES) or UNKNOWN_TITLE,
                        document=document,
                        page_range=pick_field(ref.row, PAGE_ALIASES),
                        sheet=ref.sheet,
                        row_number=ref.row_number,
                        manifest_row=dict(ref.row),
                    )
                )
        return report
