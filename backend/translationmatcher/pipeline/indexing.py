"""Archival index for newly extracted documents."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from translationmatcher.db import DocumentRow, set_document_index
from translationmatcher.oracle.client import Oracle, request
from translationmatcher.oracle.prompts import index_source_prompt, index_target_prompt
from translationmatcher.oracle.results import SourceIndex, TargetIndex, TaskKind
from translationmatcher.settings import Settings

logger = logging.getLogger(__name__)


def index_document(
    oracle: Oracle,
    document: DocumentRow,
    *,
    db_path: Path,
    settings: Settings,
) -> dict[str, Any]:
    """Ask the oracle for a summary/keyword index and store it on the document row.

    Raises:
        OracleResponseError: the index was malformed.
        ExternalCallError: the call failed.
    """
    text = (document.extracted_text or "")[: settings.index_text_chars]
    if document.corpus_side == "source":
        prompt = index_source_prompt(text, source_language=settings.source_language)
        result: SourceIndex | TargetIndex = request(oracle, TaskKind.INDEX_SOURCE, prompt, SourceIndex)
    else:
        prompt = index_target_prompt(text, target_language=settings.target_language)
        result = request(oracle, TaskKind.INDEX_TARGET, prompt, TargetIndex)

    index = {"fingerprint": document.fingerprint, "filename": document.display_name, **result.model_dump()}
    set_document_index(db_path, fingerprint=document.fingerprint, corpus_side=document.corpus_side, index=index)
    logger.debug("Indexed %s (%s)", document.display_name, document.corpus_side)
    return index
