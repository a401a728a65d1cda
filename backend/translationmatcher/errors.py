"""Exception taxonomy for the matching pipeline.

Per-item errors (extraction, oracle, manifest reference) are caught at the
item boundary and logged; they never abort a stage. ``PipelineFatalError``
and anything unexpected abort the run.
"""
from __future__ import annotations

from pathlib import Path


class TranslationMatcherError(Exception):
    """Base class for all pipeline errors."""


class ExtractionError(TranslationMatcherError):
    """A source file could not be read or parsed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Could not extract {path}: {reason}")
        self.path = path
        self.reason = reason


class ExternalCallError(TranslationMatcherError):
    """The oracle call itself failed (network, provider, timeout)."""


class OracleResponseError(TranslationMatcherError):
    """The oracle answered, but not with a usable structured result."""

    def __init__(self, task_kind: str, reason: str, raw: str | None = None) -> None:
        super().__init__(f"{task_kind}: {reason}")
        self.task_kind = task_kind
        self.reason = reason
        self.raw = raw


class ManifestReferenceError(TranslationMatcherError):
    """A manifest row references a file that was not discovered."""

    def __init__(self, sheet: str, row_number: int, reference: str) -> None:
        super().__init__(f"{sheet} row {row_number}: no file found for {reference!r}")
        self.sheet = sheet
        self.row_number = row_number
        self.reference = reference


class PipelineFatalError(TranslationMatcherError):
    """Aborts the whole run."""


class ManifestReadError(PipelineFatalError):
    pass
