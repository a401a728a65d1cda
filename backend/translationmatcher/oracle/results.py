"""Typed oracle results, one model per task kind.

Oracle payloads are loosely-typed JSON; every stage validates the fields it
needs here instead of reading keys ad hoc. A payload that fails validation
becomes an ``OracleResponseError`` at the call site.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


class TaskKind(str, Enum):
    INDEX_SOURCE = "index_source"
    INDEX_TARGET = "index_target"
    EXTRACT_SNIPPETS = "extract_snippets"
    VERIFY_MATCH = "verify_match"
    GENERATE_CITATION = "generate_citation"


class AnchorType(str, Enum):
    PROPER_NAME = "properName"
    DATE = "date"
    NUMBER = "number"
    TECHNICAL_TERM = "technicalTerm"
    DISTINCTIVE_PHRASE = "distinctivePhrase"
    LATIN_QUOTE = "latinQuote"
    TITLE = "title"


class MatchType(str, Enum):
    DIRECT_TRANSLATION = "direct_translation"
    PARTIAL_TRANSLATION = "partial_translation"
    ADAPTATION = "adaptation"
    NO_MATCH = "no_match"


class _OracleModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(v) for v in value if v is not None and str(v).strip()]


StrList = Annotated[list[str], BeforeValidator(_as_str_list)]


class SourceIndex(_OracleModel):
    document_summary: str
    keywords: StrList = Field(default_factory=list)
    languages_detected: StrList = Field(default_factory=list)
    estimated_date_or_year: str | None = None
    title: str | None = None
    author: str | None = None
    periodical: str | None = None

    @field_validator("estimated_date_or_year", mode="before")
    @classmethod
    def _year_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class TargetIndex(_OracleModel):
    document_summary_pt: str
    keywords_pt: StrList = Field(default_factory=list)
    estimated_date_or_year: str | None = None

    @field_validator("estimated_date_or_year", mode="before")
    @classmethod
    def _year_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class SnippetPayload(_OracleModel):
    original: str = Field(min_length=1)
    translated: str = Field(min_length=1)
    anchor_type: AnchorType = AnchorType.DISTINCTIVE_PHRASE

    @field_validator("original", "translated", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("anchor_type", mode="before")
    @classmethod
    def _lenient_anchor(cls, v: Any) -> Any:
        # Unknown anchor labels degrade to a generic phrase rather than dropping the snippet
        if v is None:
            return AnchorType.DISTINCTIVE_PHRASE
        if isinstance(v, str):
            for member in AnchorType:
                if v.strip().lower().replace("_", "") == member.value.lower():
                    return member
            return AnchorType.DISTINCTIVE_PHRASE
        return v


class SnippetExtraction(_OracleModel):
    snippets: list[Any]

    def usable_snippets(self) -> list[SnippetPayload]:
        """Entries that validate; malformed ones are dropped individually."""
        usable: list[SnippetPayload] = []
        for raw in self.snippets:
            try:
                usable.append(SnippetPayload.model_validate(raw))
            except ValidationError:
                continue
        return usable


class EvidenceQuote(_OracleModel):
    target: str = ""
    source: str = ""
    location: str | None = None


class VerificationJudgment(_OracleModel):
    is_match: bool
    confidence: float = Field(ge=0.0, le=1.0)
    match_type: MatchType
    reason: str = ""
    confirmed_snippets: StrList = Field(default_factory=list)
    evidence_quotes: list[EvidenceQuote] = Field(default_factory=list)
    target_location: str | None = None
    source_location: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _percent_to_ratio(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and 1.0 < v <= 100.0:
            return v / 100.0
        return v

    @field_validator("evidence_quotes", mode="before")
    @classmethod
    def _quotes(cls, v: Any) -> Any:
        if v is None:
            return []
        return [{"target": q} if isinstance(q, str) else q for q in v]


class CitationResult(_OracleModel):
    chicago_bibliography: str = Field(min_length=1)
    fields: dict[str, Any] = Field(default_factory=dict)

