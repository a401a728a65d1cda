"""Chicago-style citations for the source side of persisted matches."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from translationmatcher.db import DocumentRow, MatchRow, update_match_citation
from translationmatcher.oracle.client import Oracle, request
from translationmatcher.oracle.prompts import citation_prompt
from translationmatcher.oracle.results import CitationResult, TaskKind

LEADING_TEXT_CHARS = 1500


def citation_metadata(document: DocumentRow | None, match: MatchRow) -> dict[str, Any]:
    """Metadata for the citation prompt: the source index, else the opening text."""
    if document is None:
        return {
            "fingerprint": match.document_ref,
            "filename": match.evidence.get("source_document"),
        }
    if document.index:
        return dict(document.index)
    return {
        "fingerprint": document.fingerprint,
        "filename": document.display_name,
        "leading_text": (document.extracted_text or "")[:LEADING_TEXT_CHARS],
    }


def generate_citation(
    oracle: Oracle,
    match: MatchRow,
    document: DocumentRow | None,
    *,
    db_path: Path,
) -> dict[str, Any]:
    """Generate and persist the citation for one match.

    Raises:
        OracleResponseError: the citation was malformed.
        ExternalCallError: the call failed.
    """
    result = request(oracle, TaskKind.GENERATE_CITATION, citation_prompt(citation_metadata(document, match)), CitationResult)
    citation = {
        "document_ref": match.document_ref,
        "chicago_bibliography": result.chicago_bibliography,
        "fields": result.fields,
    }
    update_match_citation(db_path, match_id=match.id, citation=citation)
    return citation
