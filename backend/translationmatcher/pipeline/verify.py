"""Semantic verification of lexical candidates.

Each top-ranked (article, source document) pair is sent to the oracle with
both texts and the anchors the lexical pass found. A verdict becomes a Match
only when the oracle says it is one, with a real match type and confidence
at or above the configured threshold.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from translationmatcher.oracle.client import Oracle, request
from translationmatcher.oracle.prompts import verification_prompt
from translationmatcher.oracle.results import MatchType, TaskKind, VerificationJudgment
from translationmatcher.pipeline.manifest import Article
from translationmatcher.pipeline.matcher import Candidate
from translationmatcher.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    article_ref: str
    document_ref: str
    match_type: MatchType
    confidence: float
    evidence: dict[str, Any]


def is_persistable(judgment: VerificationJudgment, *, min_confidence: float = 0.5) -> bool:
    return (
        judgment.is_match
        and judgment.match_type != MatchType.NO_MATCH
        and judgment.confidence >= min_confidence
    )


def select_evidence_snippets(
    candidate: Candidate,
    judgment: VerificationJudgment,
    *,
    fallback_ratio: float = 0.5,
) -> tuple[str, list[dict[str, Any]]]:
    """Snippets to persist: oracle-confirmed ones, else the strong lexical hits."""
    if judgment.confirmed_snippets:
        return "oracle_confirmed", [{"translated": s} for s in judgment.confirmed_snippets]
    strong = [h.to_dict() for h in candidate.hits if h.ratio >= fallback_ratio]
    return "lexical", strong


def build_evidence(
    article: Article,
    candidate: Candidate,
    judgment: VerificationJudgment,
    *,
    fallback_ratio: float = 0.5,
) -> dict[str, Any]:
    snippet_source, snippets = select_evidence_snippets(candidate, judgment, fallback_ratio=fallback_ratio)
    return {
        "article_title": article.title,
        "article_sheet": article.sheet,
        "article_row": article.row_number,
        "article_pages": article.page_range,
        "article_document": article.document.display_name,
        "source_document": candidate.document.display_name,
        "reason": judgment.reason,
        "lexical_match_count": candidate.match_count,
        "snippet_source": snippet_source,
        "matching_snippets": snippets,
        "evidence_quotes": [q.model_dump() for q in judgment.evidence_quotes],
        "target_location": judgment.target_location,
        "source_location": judgment.source_location,
    }


def judge(oracle: Oracle, article: Article, candidate: Candidate, settings: Settings) -> VerificationJudgment:
    prompt = verification_prompt(
        article_title=article.title,
        article_text=article.full_text[: settings.verify_text_chars],
        candidate_name=candidate.document.display_name,
        candidate_text=(candidate.document.extracted_text or "")[: settings.verify_text_chars],
        snippets=[h.to_dict() for h in candidate.hits],
        min_confidence=settings.verification_min_confidence,
    )
    return request(oracle, TaskKind.VERIFY_MATCH, prompt, VerificationJudgment)


def verify_candidate(oracle: Oracle, article: Article, candidate: Candidate, settings: Settings) -> Match | None:
    """Return a Match for a confirmed candidate, None for a rejected one.

    Raises:
        OracleResponseError: malformed verdict.
        ExternalCallError: the call failed.
    """
    judgment = judge(oracle, article, candidate, settings)
    if not is_persistable(judgment, min_confidence=settings.verification_min_confidence):
        logger.info(
            "Rejected %s vs %s (%s, confidence %.2f)",
            article.ref,
            candidate.document.display_name,
            judgment.match_type.value,
            judgment.confidence,
        )
        return None
    return Match(
        article_ref=article.ref,
        document_ref=candidate.document.fingerprint,
        match_type=judgment.match_type,
        confidence=judgment.confidence,
        evidence=build_evidence(article, candidate, judgment, fallback_ratio=settings.evidence_fallback_ratio),
    )
