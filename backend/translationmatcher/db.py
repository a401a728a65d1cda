from __future__ import annotations

import contextlib
import json
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

CORPUS_SIDES = ("target", "source")


def utc_now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def _connect(db_path: Path) -> sqlite3.Connection:
    """Create a database connection with proper configuration.

    IMMEDIATE isolation acquires the write lock at BEGIN, so the single
    pipeline writer and concurrent API readers never interleave a
    read-modify-write.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(db_path),
        timeout=30.0,
        isolation_level="IMMEDIATE",
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    with _connect(db_path) as conn:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
              fingerprint TEXT NOT NULL,
              corpus_side TEXT NOT NULL CHECK(corpus_side IN ('target', 'source')),
              display_name TEXT NOT NULL,
              path TEXT NOT NULL,
              extracted_text TEXT,
              page_count INTEGER,
              low_text_warning INTEGER DEFAULT 0,
              index_json TEXT,
              status TEXT NOT NULL DEFAULT 'pending',
              error TEXT,
              created_at_utc TEXT NOT NULL,
              updated_at_utc TEXT NOT NULL,
              PRIMARY KEY (fingerprint, corpus_side)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_side ON documents(corpus_side, status)")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS candidates (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              article_ref TEXT NOT NULL,
              document_ref TEXT NOT NULL,
              reason TEXT,
              confidence REAL,
              raw_response TEXT,
              created_at_utc TEXT NOT NULL
            )
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS matches (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              article_ref TEXT NOT NULL,
              document_ref TEXT NOT NULL,
              match_type TEXT NOT NULL,
              confidence REAL NOT NULL,
              evidence_json TEXT NOT NULL,
              citation_json TEXT,
              created_at_utc TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_matches_pair ON matches(article_ref, document_ref)"
        )


# --- Documents (extraction cache storage) ---


@dataclass(frozen=True)
class DocumentRow:
    fingerprint: str
    corpus_side: str
    display_name: str
    path: str
    extracted_text: str | None
    page_count: int | None
    low_text_warning: bool
    index: dict[str, Any] | None
    status: str
    error: str | None
    created_at_utc: str
    updated_at_utc: str

    @property
    def is_extracted(self) -> bool:
        return self.status == "extracted"


def _row_to_document(row: sqlite3.Row) -> DocumentRow:
    index: dict[str, Any] | None = None
    if row["index_json"]:
        with contextlib.suppress(json.JSONDecodeError, TypeError):
            index = json.loads(row["index_json"])
    return DocumentRow(
        fingerprint=row["fingerprint"],
        corpus_side=row["corpus_side"],
        display_name=row["display_name"],
        path=row["path"],
        extracted_text=row["extracted_text"],
        page_count=row["page_count"],
        low_text_warning=bool(row["low_text_warning"]),
        index=index,
        status=row["status"],
        error=row["error"],
        created_at_utc=row["created_at_utc"],
        updated_at_utc=row["updated_at_utc"],
    )


def lookup_document(db_path: Path, *, fingerprint: str, corpus_side: str) -> DocumentRow | None:
    with _connect(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM documents WHERE fingerprint = ? AND corpus_side = ?",
            (fingerprint, corpus_side),
        ).fetchone()
    return _row_to_document(row) if row else None


def store_document(
    db_path: Path,
    *,
    fingerprint: str,
    corpus_side: str,
    display_name: str,
    path: Path | str,
    text: str,
    page_count: int | None = None,
    low_text_warning: bool = False,
) -> None:
    """Upsert an extracted document.

    An already-extracted row is left untouched: identical bytes always yield
    identical text, so the first write wins. A row previously marked as
    ``error`` (or ``pending``) is upgraded.
    """
    if corpus_side not in CORPUS_SIDES:
        raise ValueError(f"Unknown corpus side: {corpus_side}")
    now = utc_now_iso()
    with _connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO documents(
              fingerprint, corpus_side, display_name, path, extracted_text, page_count,
              low_text_warning, status, error, created_at_utc, updated_at_utc
            )
            VALUES(?, ?, ?, ?, ?, ?, ?, 'extracted', NULL, ?, ?)
            ON CONFLICT(fingerprint, corpus_side) DO UPDATE SET
              display_name = excluded.display_name,
              path = excluded.path,
              extracted_text = excluded.extracted_text,
              page_count = excluded.page_count,
              low_text_warning = excluded.low_text_warning,
              status = 'extracted',
              error = NULL,
              updated_at_utc = excluded.updated_at_utc
            WHERE documents.status != 'extracted'
            """,
            (
                fingerprint,
                corpus_side,
                display_name,
                str(path),
                text,
                page_count,
                int(low_text_warning),
                now,
                now,
            ),
        )


def mark_document_error(
    db_path: Path,
    *,
    fingerprint: str,
    corpus_side: str,
    display_name: str,
    path: Path | str,
    error: str,
) -> None:
    now = utc_now_iso()
    with _connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO documents(
              fingerprint, corpus_side, display_name, path, status, error,
              created_at_utc, updated_at_utc
            )
            VALUES(?, ?, ?, ?, 'error', ?, ?, ?)
            ON CONFLICT(fingerprint, corpus_side) DO UPDATE SET
              error = excluded.error,
              updated_at_utc = excluded.updated_at_utc
            WHERE documents.status != 'extracted'
            """,
            (fingerprint, corpus_side, display_name, str(path), error[:500], now, now),
        )


def set_document_index(db_path: Path, *, fingerprint: str, corpus_side: str, index: dict[str, Any]) -> None:
    with _connect(db_path) as conn:
        conn.execute(
            """
            UPDATE documents
            SET index_json = ?, updated_at_utc = ?
            WHERE fingerprint = ? AND corpus_side = ?
            """,
            (json.dumps(index, ensure_ascii=False), utc_now_iso(), fingerprint, corpus_side),
        )


def list_documents(db_path: Path, *, corpus_side: str, extracted_only: bool = True) -> list[DocumentRow]:
    """List documents of one corpus side in insertion order."""
    query = "SELECT * FROM documents WHERE corpus_side = ?"
    if extracted_only:
        query += " AND status = 'extracted'"
    query += " ORDER BY rowid"
    with _connect(db_path) as conn:
        rows = conn.execute(query, (corpus_side,)).fetchall()
    return [_row_to_document(r) for r in rows]


# --- Candidates (ephemeral, replaced every matching stage) ---


@dataclass(frozen=True)
class CandidateRow:
    id: int
    article_ref: str
    document_ref: str
    reason: str | None
    confidence: float | None
    raw_response: dict[str, Any] | None
    created_at_utc: str


def clear_candidates(db_path: Path) -> int:
    with _connect(db_path) as conn:
        cur = conn.execute("DELETE FROM candidates")
        return cur.rowcount


def insert_candidate(
    db_path: Path,
    *,
    article_ref: str,
    document_ref: str,
    reason: str,
    confidence: float,
    raw_response: dict[str, Any],
) -> int:
    with _connect(db_path) as conn:
        cur = conn.execute(
            """
            INSERT INTO candidates(article_ref, document_ref, reason, confidence, raw_response, created_at_utc)
            VALUES(?, ?, ?, ?, ?, ?)
            """,
            (
                article_ref,
                document_ref,
                reason,
                confidence,
                json.dumps(raw_response, ensure_ascii=False),
                utc_now_iso(),
            ),
        )
        return int(cur.lastrowid or 0)


def list_candidates(db_path: Path) -> list[CandidateRow]:
    with _connect(db_path) as conn:
        rows = conn.execute("SELECT * FROM candidates ORDER BY id").fetchall()
    out: list[CandidateRow] = []
    for r in rows:
        raw: dict[str, Any] | None = None
        if r["raw_response"]:
            with contextlib.suppress(json.JSONDecodeError, TypeError):
                raw = json.loads(r["raw_response"])
        out.append(
            CandidateRow(
                id=r["id"],
                article_ref=r["article_ref"],
                document_ref=r["document_ref"],
                reason=r["reason"],
                confidence=r["confidence"],
                raw_response=raw,
                created_at_utc=r["created_at_utc"],
            )
        )
    return out


# --- Matches (durable) ---


@dataclass(frozen=True)
class MatchRow:
    id: int
    article_ref: str
    document_ref: str
    match_type: str
    confidence: float
    evidence: dict[str, Any]
    citation: dict[str, Any] | None
    created_at_utc: str


def _row_to_match(row: sqlite3.Row) -> MatchRow:
    citation: dict[str, Any] | None = None
    if row["citation_json"]:
        with contextlib.suppress(json.JSONDecodeError, TypeError):
            citation = json.loads(row["citation_json"])
    return MatchRow(
        id=row["id"],
        article_ref=row["article_ref"],
        document_ref=row["document_ref"],
        match_type=row["match_type"],
        confidence=row["confidence"],
        evidence=json.loads(row["evidence_json"]),
        citation=citation,
        created_at_utc=row["created_at_utc"],
    )


def insert_match(
    db_path: Path,
    *,
    article_ref: str,
    document_ref: str,
    match_type: str,
    confidence: float,
    evidence: dict[str, Any],
) -> int | None:
    """Persist a verified match.

    Returns the new row id, or None when the (article, document) pair is
    already stored from an earlier run.
    """
    if match_type == "no_match":
        raise ValueError("no_match verdicts are never persisted")
    with _connect(db_path) as conn:
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO matches(
              article_ref, document_ref, match_type, confidence, evidence_json, created_at_utc
            )
            VALUES(?, ?, ?, ?, ?, ?)
            """,
            (
                article_ref,
                document_ref,
                match_type,
                confidence,
                json.dumps(evidence, ensure_ascii=False),
                utc_now_iso(),
            ),
        )
        if cur.rowcount == 0:
            return None
        return int(cur.lastrowid or 0)


def list_matches(db_path: Path, *, min_confidence: float = 0.0) -> list[MatchRow]:
    with _connect(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM matches WHERE confidence >= ? ORDER BY confidence DESC, id",
            (min_confidence,),
        ).fetchall()
    return [_row_to_match(r) for r in rows]


def list_matches_without_citation(db_path: Path) -> list[MatchRow]:
    with _connect(db_path) as conn:
        rows = conn.execute("SELECT * FROM matches WHERE citation_json IS NULL ORDER BY id").fetchall()
    return [_row_to_match(r) for r in rows]


def update_match_citation(db_path: Path, *, match_id: int, citation: dict[str, Any]) -> None:
    with _connect(db_path) as conn:
        conn.execute(
            "UPDATE matches SET citation_json = ? WHERE id = ?",
            (json.dumps(citation, ensure_ascii=False), match_id),
        )


def clear_matches(db_path: Path) -> int:
    with _connect(db_path) as conn:
        cur = conn.execute("DELETE FROM matches")
        return cur.rowcount
