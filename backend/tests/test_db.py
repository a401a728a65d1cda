"""Tests for SQLite persistence helpers."""
from __future__ import annotations

from pathlib import Path

import pytest

from translationmatcher.db import (
    clear_candidates,
    clear_matches,
    init_db,
    insert_candidate,
    insert_match,
    list_candidates,
    list_documents,
    list_matches,
    list_matches_without_citation,
    lookup_document,
    mark_document_error,
    set_document_index,
    store_document,
    update_match_citation,
)


def _store(db_path: Path, fingerprint: str, side: str = "source", text: str = "texto") -> None:
    store_document(
        db_path,
        fingerprint=fingerprint,
        corpus_side=side,
        display_name=f"{fingerprint}.pdf",
        path=f"/c/{fingerprint}.pdf",
        text=text,
        page_count=2,
    )


class TestDocuments:
    def test_init_db_is_idempotent(self, temp_db_path: Path):
        init_db(temp_db_path)
        init_db(temp_db_path)

    def test_unknown_side_is_rejected(self, temp_db_path: Path):
        with pytest.raises(ValueError):
            store_document(temp_db_path, fingerprint="x", corpus_side="middle", display_name="x", path="x", text="t")

    def test_list_in_insertion_order_extracted_only(self, temp_db_path: Path):
        _store(temp_db_path, "b")
        _store(temp_db_path, "a")
        mark_document_error(temp_db_path, fingerprint="c", corpus_side="source", display_name="c", path="c", error="bad")

        assert [d.fingerprint for d in list_documents(temp_db_path, corpus_side="source")] == ["b", "a"]
        all_docs = list_documents(temp_db_path, corpus_side="source", extracted_only=False)
        assert [d.status for d in all_docs] == ["extracted", "extracted", "error"]

    def test_error_never_downgrades_extracted(self, temp_db_path: Path):
        _store(temp_db_path, "a")
        mark_document_error(temp_db_path, fingerprint="a", corpus_side="source", display_name="a", path="a", error="x")
        assert lookup_document(temp_db_path, fingerprint="a", corpus_side="source").status == "extracted"

    def test_index_roundtrip(self, temp_db_path: Path):
        _store(temp_db_path, "a", side="target")
        set_document_index(temp_db_path, fingerprint="a", corpus_side="target", index={"document_summary_pt": "Luz"})
        doc = lookup_document(temp_db_path, fingerprint="a", corpus_side="target")
        assert doc.index == {"document_summary_pt": "Luz"}


class TestCandidates:
    def test_clear_returns_count(self, temp_db_path: Path):
        for i in range(3):
            insert_candidate(
                temp_db_path,
                article_ref=f"art{i}",
                document_ref="d",
                reason="2 snippet(s) matched",
                confidence=0.5,
                raw_response={"match_count": 2},
            )
        assert [c.raw_response for c in list_candidates(temp_db_path)] == [{"match_count": 2}] * 3
        assert clear_candidates(temp_db_path) == 3
        assert list_candidates(temp_db_path) == []


class TestMatches:
    def _insert(self, db_path: Path, article: str, confidence: float) -> int | None:
        return insert_match(
            db_path,
            article_ref=article,
            document_ref="doc",
            match_type="direct_translation",
            confidence=confidence,
            evidence={"reason": "r"},
        )

    def test_min_confidence_filter_and_order(self, temp_db_path: Path):
        self._insert(temp_db_path, "a", 0.6)
        self._insert(temp_db_path, "b", 0.9)
        self._insert(temp_db_path, "c", 0.5)
        assert [m.article_ref for m in list_matches(temp_db_path)] == ["b", "a", "c"]
        assert [m.article_ref for m in list_matches(temp_db_path, min_confidence=0.6)] == ["b", "a"]

    def test_citation_update(self, temp_db_path: Path):
        match_id = self._insert(temp_db_path, "a", 0.8)
        self._insert(temp_db_path, "b", 0.8)
        update_match_citation(temp_db_path, match_id=match_id, citation={"chicago_bibliography": "X."})

        pending = list_matches_without_citation(temp_db_path)
        assert [m.article_ref for m in pending] == ["b"]
        assert list_matches(temp_db_path, min_confidence=0.0)[0].citation == {"chicago_bibliography": "X."}

    def test_clear_matches(self, temp_db_path: Path):
        self._insert(temp_db_path, "a", 0.8)
        assert clear_matches(temp_db_path) == 1
        assert list_matches(temp_db_path) == []
