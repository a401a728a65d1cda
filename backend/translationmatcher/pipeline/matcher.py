"""Lexical candidate discovery.

The oracle turns each article into a handful of translation-resilient
snippets. Each translated snippet becomes a set of key terms, and every
source document is scored by how many of those terms it contains. Documents
hit by enough snippets are ranked and only the top few go on to the
(expensive) verification stage, so oracle calls grow with the number of
articles, not with the size of the source corpus.
"""
from __future__ import annotations

import logging
import string
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from translationmatcher.db import DocumentRow
from translationmatcher.oracle.client import Oracle, request
from translationmatcher.oracle.prompts import snippet_prompt
from translationmatcher.oracle.results import AnchorType, SnippetExtraction, SnippetPayload, TaskKind
from translationmatcher.pipeline.manifest import Article
from translationmatcher.settings import Settings

logger = logging.getLogger(__name__)

_TRAILING_PUNCTUATION = string.punctuation + "«»“”‘’„…—–"


@dataclass(frozen=True)
class Snippet:
    original_text: str
    translated_text: str
    anchor_type: AnchorType

    @classmethod
    def from_payload(cls, payload: SnippetPayload) -> Snippet:
        return cls(
            original_text=payload.original,
            translated_text=payload.translated,
            anchor_type=payload.anchor_type,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "original": self.original_text,
            "translated": self.translated_text,
            "anchor_type": self.anchor_type.value,
        }


@dataclass(frozen=True)
class SnippetHit:
    snippet: Snippet
    ratio: float
    matched_terms: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.snippet.to_dict(),
            "match_ratio": round(self.ratio, 4),
            "matched_terms": list(self.matched_terms),
        }


@dataclass
class Candidate:
    """An (article, source document) pair that survived lexical filtering."""

    article_ref: str
    document: DocumentRow
    hits: list[SnippetHit] = field(default_factory=list)

    @property
    def match_count(self) -> int:
        return len(self.hits)

    @property
    def best_ratio(self) -> float:
        return max((h.ratio for h in self.hits), default=0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "article_ref": self.article_ref,
            "document_ref": self.document.fingerprint,
            "document_name": self.document.display_name,
            "match_count": self.match_count,
            "supporting_snippets": [h.to_dict() for h in self.hits],
        }


def key_terms(text: str, *, min_length: int = 3) -> frozenset[str]:
    """Whitespace tokens longer than ``min_length``, trailing punctuation stripped, lower-cased."""
    terms: set[str] = set()
    for token in text.split():
        if len(token) <= min_length:
            continue
        term = token.rstrip(_TRAILING_PUNCTUATION).lower()
        if term:
            terms.add(term)
    return frozenset(terms)


def match_ratio(terms: frozenset[str], haystack: str) -> tuple[float, tuple[str, ...]]:
    """Share of ``terms`` present in ``haystack`` (already lower-cased)."""
    if not terms:
        return 0.0, ()
    matched = tuple(sorted(t for t in terms if t in haystack))
    return len(matched) / len(terms), matched


class SourceCorpus:
    """Source-side documents with their lower-cased text, in insertion order."""

    def __init__(self, documents: Sequence[DocumentRow]) -> None:
        self._documents = list(documents)
        self._haystacks = [(d.extracted_text or "").lower() for d in self._documents]

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self):
        return iter(zip(self._documents, self._haystacks))


def find_candidates(
    article_ref: str,
    snippets: Sequence[Snippet],
    corpus: SourceCorpus,
    *,
    threshold: float = 0.4,
    min_term_length: int = 3,
) -> list[Candidate]:
    """Score every source document against every snippet.

    A document qualifies for a snippet when its match ratio reaches
    ``threshold``; documents qualifying for at least one snippet become
    candidates, returned in corpus order.
    """
    snippet_terms = [(s, key_terms(s.translated_text, min_length=min_term_length)) for s in snippets]
    candidates: list[Candidate] = []
    for document, haystack in corpus:
        hits: list[SnippetHit] = []
        for snippet, terms in snippet_terms:
            ratio, matched = match_ratio(terms, haystack)
            if terms and ratio >= threshold:
                hits.append(SnippetHit(snippet=snippet, ratio=ratio, matched_terms=matched))
        if hits:
            candidates.append(Candidate(article_ref=article_ref, document=document, hits=hits))
    return candidates


def rank_candidates(candidates: Sequence[Candidate], *, limit: int = 3) -> list[Candidate]:
    """Top ``limit`` by match count; ties keep corpus order (sorted is stable)."""
    return sorted(candidates, key=lambda c: -c.match_count)[:limit]


def request_snippets(oracle: Oracle, article: Article, settings: Settings) -> list[Snippet]:
    """Ask the oracle for resilient anchors from one article.

    Returns at most ``settings.snippets_max`` snippets; an empty list means
    the article has nothing to search for.

    Raises:
        OracleResponseError: the result did not contain a ``snippets`` list.
        ExternalCallError: the call failed.
    """
    prompt = snippet_prompt(
        title=article.title,
        page_range=article.page_range,
        text=article.full_text[: settings.snippet_text_chars],
        target_language=settings.target_language,
        source_language=settings.source_language,
        min_snippets=settings.snippets_min,
        max_snippets=settings.snippets_max,
    )
    result = request(oracle, TaskKind.EXTRACT_SNIPPETS, prompt, SnippetExtraction)
    usable = result.usable_snippets()
    if len(usable) < len(result.snippets):
        logger.info("Dropped %d malformed snippet(s) for %s", len(result.snippets) - len(usable), article.ref)
    return [Snippet.from_payload(p) for p in usable[: settings.snippets_max]]
