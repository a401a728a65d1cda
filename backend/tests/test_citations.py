"""Tests for the citation pass."""
from __future__ import annotations

import json

import pytest

from conftest import ScriptedOracle
from translationmatcher.db import insert_match, list_matches, lookup_document, set_document_index, store_document
from translationmatcher.errors import OracleResponseError
from translationmatcher.oracle.results import TaskKind
from translationmatcher.pipeline.citations import LEADING_TEXT_CHARS, citation_metadata, generate_citation


@pytest.fixture
def stored(temp_db_path):
    store_document(
        temp_db_path,
        fingerprint="fp1",
        corpus_side="source",
        display_name="journal.pdf",
        path="/c/journal.pdf",
        text="J" * (LEADING_TEXT_CHARS + 500),
    )
    insert_match(
        temp_db_path,
        article_ref="art",
        document_ref="fp1",
        match_type="direct_translation",
        confidence=0.9,
        evidence={"source_document": "journal.pdf"},
    )
    return lookup_document(temp_db_path, fingerprint="fp1", corpus_side="source"), list_matches(temp_db_path)[0]


class TestCitationMetadata:
    def test_leading_text_without_index(self, stored):
        document, match = stored
        meta = citation_metadata(document, match)
        assert meta["filename"] == "journal.pdf"
        assert len(meta["leading_text"]) == LEADING_TEXT_CHARS

    def test_index_preferred(self, temp_db_path, stored):
        _, match = stored
        set_document_index(
            temp_db_path,
            fingerprint="fp1",
            corpus_side="source",
            index={"fingerprint": "fp1", "publication": "Journal des Debats"},
        )
        document = lookup_document(temp_db_path, fingerprint="fp1", corpus_side="source")
        assert citation_metadata(document, match)["publication"] == "Journal des Debats"

    def test_missing_document_uses_match_evidence(self, stored):
        _, match = stored
        assert citation_metadata(None, match) == {"fingerprint": "fp1", "filename": "journal.pdf"}


class TestGenerateCitation:
    def test_persists_citation(self, temp_db_path, stored):
        document, match = stored
        oracle = ScriptedOracle(
            {
                TaskKind.GENERATE_CITATION: {
                    "chicago_bibliography": "Journal des Debats. Paris, 1848.",
                    "fields": {"periodical": "Journal des Debats"},
                }
            }
        )

        citation = generate_citation(oracle, match, document, db_path=temp_db_path)

        assert citation["document_ref"] == "fp1"
        assert list_matches(temp_db_path)[0].citation == citation
        prompt = oracle.calls_for(TaskKind.GENERATE_CITATION)[0]
        assert json.dumps("journal.pdf") in prompt

    def test_empty_bibliography_is_rejected(self, temp_db_path, stored):
        document, match = stored
        oracle = ScriptedOracle({TaskKind.GENERATE_CITATION: {"chicago_bibliography": ""}})
        with pytest.raises(OracleResponseError):
            generate_citation(oracle, match, document, db_path=temp_db_path)
        assert list_matches(temp_db_path)[0].citation is None
