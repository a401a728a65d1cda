"""Prompt builders for every oracle task.

The snippet prompt carries the anchor policy (resilient anchors, no masthead
or boilerplate); the verification prompt carries the conservative-judgment
policy (shared anchors alone never make a match).
"""
from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from translationmatcher.oracle.results import TaskKind

SYSTEM_ROLES: dict[TaskKind, str] = {
    TaskKind.INDEX_SOURCE: "You are an expert archivist of 19th-century periodicals.",
    TaskKind.INDEX_TARGET: "You are an expert archivist of 19th-century periodicals.",
    TaskKind.EXTRACT_SNIPPETS: "You are a philologist who traces translated texts across languages.",
    TaskKind.VERIFY_MATCH: "You are a translation detective. You are careful and conservative.",
    TaskKind.GENERATE_CITATION: "You are a bibliographer.",
}


def index_source_prompt(text: str, *, source_language: str) -> str:
    return f"""Analyze this text from a 19th-century {source_language} corpus.

Return ONLY valid JSON:
{{
  "document_summary": "<3-5 sentences>",
  "keywords": ["..."],
  "languages_detected": ["..."],
  "estimated_date_or_year": "<year or date, or null>",
  "title": "<title of the work or article, or null>",
  "author": "<author, or null>",
  "periodical": "<periodical or publisher, or null>"
}}

TEXT:
{text}"""


def index_target_prompt(text: str, *, target_language: str) -> str:
    return f"""Analyze this text from a 19th-century {target_language} corpus.

Return ONLY valid JSON:
{{
  "document_summary_pt": "<3-5 sentences, in the language of the text>",
  "keywords_pt": ["..."],
  "estimated_date_or_year": "<year or date, or null>"
}}

TEXT:
{text}"""


def snippet_prompt(
    *,
    title: str,
    page_range: str | None,
    text: str,
    target_language: str,
    source_language: str,
    min_snippets: int,
    max_snippets: int,
) -> str:
    pages = f" (pages {page_range})" if page_range else ""
    return f"""The following {target_language} article may be a translation of a {source_language} original.
Article: "{title}"{pages}

Pick {min_snippets} to {max_snippets} short passages (3-12 words) from THIS article that would
survive translation, and translate each into {source_language} the way a 19th-century
translator would have rendered it.

Prefer, in order:
- proper names (people, places, institutions)
- dates and numbers
- technical or scientific terms
- distinctive multi-word phrases
- Latin or foreign-language quotations
- titles of works cited in the text

AVOID the periodical's own title, mastheads, running headers, page numbers,
subscription notices and other boilerplate. Pick passages that belong to this
article's content.

Return ONLY valid JSON:
{{
  "snippets": [
    {{
      "original": "<passage as it appears in the article>",
      "translated": "<{source_language} translation>",
      "anchor_type": "properName|date|number|technicalTerm|distinctivePhrase|latinQuote|title"
    }}
  ]
}}

ARTICLE TEXT:
{text}"""


def verification_prompt(
    *,
    article_title: str,
    article_text: str,
    candidate_name: str,
    candidate_text: str,
    snippets: Sequence[dict[str, Any]],
    min_confidence: float,
) -> str:
    snippet_lines = json.dumps(list(snippets), ensure_ascii=False, indent=2)
    return f"""Decide whether TEXT A (article "{article_title}") is a translation of TEXT B ({candidate_name}).

A lexical pre-filter found these anchors from A in B:
{snippet_lines}

Be conservative. Shared names, dates or terms alone are NOT enough: two texts
reporting the same event share anchors without one translating the other.
Only call it a match when the narrative order, argument and structure of A
correspond to B. Answer is_match=true only with confidence >= {min_confidence}.

Return ONLY valid JSON:
{{
  "is_match": true|false,
  "confidence": <0.0-1.0>,
  "match_type": "direct_translation|partial_translation|adaptation|no_match",
  "reason": "<1-3 sentences>",
  "confirmed_snippets": ["<anchors you found verbatim (as translated) in TEXT B>"],
  "evidence_quotes": [{{"target": "<quote from A>", "source": "<quote from B>", "location": "<where in B>"}}],
  "target_location": "<where in A the translated passage sits, or null>",
  "source_location": "<where in B the original passage sits, or null>"
}}

TEXT A:
{article_text}

TEXT B:
{candidate_text}"""


def citation_prompt(metadata: dict[str, Any]) -> str:
    return f"""Generate a Chicago-style bibliography entry for this 19th-century source.

Metadata:
{json.dumps(metadata, ensure_ascii=False, indent=2)}

Return ONLY valid JSON:
{{
  "chicago_bibliography": "...",
  "fields": {{"author": "...", "title": "...", "periodical": "...", "date": "..."}}
}}"""
