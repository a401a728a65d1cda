"""
Pytest configuration for backend tests.

Shared fixtures: temporary databases, test settings, corpus and manifest
builders, and a scripted oracle that stands in for the LLM.
"""
from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook
from pypdf import PdfWriter

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from translationmatcher.db import init_db
from translationmatcher.errors import OracleResponseError
from translationmatcher.oracle.client import Oracle
from translationmatcher.oracle.results import TaskKind
from translationmatcher.settings import Settings

# Long enough to stay above the low-text warning threshold
FRENCH_ARTICLE = (
    "La lumiere electrique fut presentee a Paris en 1848 devant l'Academie des sciences. "
    "Monsieur Foucault expliqua la construction de la pile et les proprietes du charbon."
)
PORTUGUESE_ARTICLE = (
    "A luz electrica foi apresentada em Paris em 1848 perante a Academia das sciencias. "
    "O senhor Foucault explicou a construcção da pilha e as propriedades do carvão."
)
UNRELATED_FRENCH = (
    "Le commerce des vins de Bordeaux a connu une annee exceptionnelle selon les negociants "
    "du port, qui attendent de nouvelles commandes d'Angleterre."
)


# --- Database / settings fixtures ---


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Initialized temporary database."""
    db_path = tmp_path / "test_translationmatcher.sqlite3"
    init_db(db_path)
    return db_path


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated to tmp_path, with the optional oracle passes off."""
    return Settings(
        data_dir=tmp_path / "data",
        enable_document_indexing=False,
        enable_citations=False,
    )


# --- Corpus builders ---


def write_text_file(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def write_blank_pdf(path: Path, pages: int = 1) -> Path:
    """PDF with empty pages (what an un-OCRed scan looks like to extraction)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    with path.open("wb") as f:
        writer.write(f)
    return path


def write_xlsx(path: Path, sheets: dict[str, list[list[Any]]]) -> Path:
    """Workbook with one worksheet per entry; the first row is the header."""
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(row)
    wb.save(path)
    return path


# --- Scripted oracle ---

# dict, callable(prompt) -> dict, or an exception instance
Responder = Any


class ScriptedOracle(Oracle):
    """In-memory oracle answering from per-task scripts.

    A script entry is a dict (returned as is), a callable taking the prompt,
    or an exception instance (raised). A list of entries is consumed in
    order; the last entry repeats.
    """

    def __init__(self, scripts: dict[TaskKind, Responder | list[Responder]] | None = None) -> None:
        self.scripts: dict[TaskKind, list[Responder]] = {}
        for kind, entry in (scripts or {}).items():
            self.script(kind, entry)
        self.calls: list[tuple[TaskKind, str]] = []
        self.before_call: Callable[[TaskKind, str], None] | None = None

    def script(self, kind: TaskKind, entry: Responder | list[Responder]) -> None:
        self.scripts[kind] = list(entry) if isinstance(entry, list) else [entry]

    def calls_for(self, kind: TaskKind) -> list[str]:
        return [prompt for k, prompt in self.calls if k == kind]

    def invoke(self, task_kind: TaskKind, system_role: str, prompt: str) -> dict[str, Any]:
        self.calls.append((task_kind, prompt))
        if self.before_call is not None:
            self.before_call(task_kind, prompt)
        entries = self.scripts.get(task_kind)
        if not entries:
            raise OracleResponseError(task_kind.value, "no script")
        entry = entries.pop(0) if len(entries) > 1 else entries[0]
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry(prompt)
        return dict(entry)


@pytest.fixture
def scripted_oracle() -> ScriptedOracle:
    return ScriptedOracle()


def snippet_payload(*pairs: tuple[str, str]) -> dict[str, Any]:
    return {
        "snippets": [
            {"original": original, "translated": translated, "anchor_type": "properName"}
            for original, translated in pairs
        ]
    }


def verdict(
    *,
    is_match: bool = True,
    confidence: float = 0.9,
    match_type: str = "direct_translation",
    confirmed: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "is_match": is_match,
        "confidence": confidence,
        "match_type": match_type,
        "reason": "Same narrative order and argument.",
        "confirmed_snippets": confirmed or [],
        "evidence_quotes": [],
    }


@pytest.fixture
def corpus_factory(tmp_path: Path) -> Callable[..., dict[str, Path]]:
    """Lay out a source folder, a target folder and a one-sheet manifest.

    Returns the paths as a dict with keys source, target, manifest.
    """

    def _make(
        *,
        sources: dict[str, str] | None = None,
        targets: dict[str, str] | None = None,
        rows: list[list[Any]] | None = None,
        header: list[str] | None = None,
        sheet: str = "Articles",
    ) -> dict[str, Path]:
        source_dir = tmp_path / "corpus_b"
        target_dir = tmp_path / "corpus_a"
        source_dir.mkdir(exist_ok=True)
        target_dir.mkdir(exist_ok=True)
        for name, text in (sources or {}).items():
            write_text_file(source_dir / name, text)
        for name, text in (targets or {}).items():
            write_text_file(target_dir / name, text)
        manifest = write_xlsx(
            tmp_path / "manifest.xlsx",
            {sheet: [header or ["File", "Title", "Pages"], *(rows or [])]},
        )
        return {"source": source_dir, "target": target_dir, "manifest": manifest}

    return _make
