"""Content-addressed extraction cache.

Documents are keyed by the SHA-256 of their raw bytes, never by name or by
normalized text: a renamed copy of a file is still a cache hit, and the
expensive extraction path only runs after a lookup misses.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from translationmatcher.db import (
    DocumentRow,
    lookup_document,
    mark_document_error,
    store_document,
)
from translationmatcher.errors import ExtractionError
from translationmatcher.pipeline.extract import ExtractionResult, extract_document
from translationmatcher.pipeline.hashing import sha256_file

logger = logging.getLogger(__name__)

Extractor = Callable[[Path], ExtractionResult]


@dataclass(frozen=True)
class CachedExtraction:
    document: DocumentRow
    from_cache: bool


class ExtractionCache:
    """SQLite-backed fingerprint -> document cache."""

    def __init__(self, db_path: Path, *, extractor: Extractor = extract_document) -> None:
        self._db_path = db_path
        self._extractor = extractor

    def lookup(self, fingerprint: str, side: str) -> DocumentRow | None:
        """Return the extracted document for this fingerprint, if any."""
        doc = lookup_document(self._db_path, fingerprint=fingerprint, corpus_side=side)
        if doc is None or not doc.is_extracted:
            return None
        return doc

    def store(
        self,
        fingerprint: str,
        side: str,
        display_name: str,
        path: Path,
        text: str,
        *,
        page_count: int | None = None,
        low_text_warning: bool = False,
    ) -> DocumentRow:
        """Upsert a document. Re-storing an existing fingerprint is a no-op."""
        store_document(
            self._db_path,
            fingerprint=fingerprint,
            corpus_side=side,
            display_name=display_name,
            path=path,
            text=text,
            page_count=page_count,
            low_text_warning=low_text_warning,
        )
        doc = lookup_document(self._db_path, fingerprint=fingerprint, corpus_side=side)
        if doc is None:
            raise ExtractionError(path, "document row missing after store")
        return doc

    def get_or_extract(self, path: Path, side: str) -> CachedExtraction:
        """Fingerprint a file, then return the cached document or extract it.

        Raises:
            ExtractionError: the file could not be hashed or extracted. The
                failure is recorded on the document row when a fingerprint
                was obtained.
        """
        try:
            fingerprint = sha256_file(path)
        except OSError as e:
            raise ExtractionError(path, str(e)) from e

        cached = self.lookup(fingerprint, side)
        if cached is not None:
            return CachedExtraction(document=cached, from_cache=True)

        try:
            result = self._extractor(path)
        except ExtractionError as e:
            mark_document_error(
                self._db_path,
                fingerprint=fingerprint,
                corpus_side=side,
                display_name=path.name,
                path=path,
                error=e.reason,
            )
            raise

        doc = self.store(
            fingerprint,
            side,
            path.name,
            path,
            result.text,
            page_count=result.page_count,
            low_text_warning=result.low_text_warning,
        )
        return CachedExtraction(document=doc, from_cache=False)
