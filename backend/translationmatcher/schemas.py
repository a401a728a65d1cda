from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Accepts both the camelCase keys the UI sends and snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Run configuration ---


class SheetConfig(_CamelModel):
    name: str = Field(min_length=1)
    filename_column: str = Field(min_length=1)
    selected: bool = True


class SourceCorpusConfig(_CamelModel):
    pdf_folder: str = Field(min_length=1)


class TargetCorpusConfig(_CamelModel):
    pdf_folder: str = Field(min_length=1)
    manifest_path: str = Field(min_length=1)
    sheets: list[SheetConfig] = Field(default_factory=list)

    def selected_sheets(self) -> list[tuple[str, str]]:
        return [(s.name, s.filename_column) for s in self.sheets if s.selected]


class AIConfig(_CamelModel):
    indexing_model: str = "gpt-4o"
    matching_model: str = "gpt-4o"
    verification_model: str = "gpt-4o"
    api_key: str | None = Field(default=None, repr=False)


class PipelineConfig(_CamelModel):
    source_corpus: SourceCorpusConfig
    target_corpus: TargetCorpusConfig
    ai: AIConfig = Field(default_factory=AIConfig)
    clear_previous_matches: bool = False


# --- API responses ---


class PipelineStatusResponse(BaseModel):
    is_running: bool
    stop_requested: bool
    state: str
    last_error: str | None = None


class StartResponse(BaseModel):
    success: bool
    state: str


class ManifestReadRequest(BaseModel):
    path: str = Field(min_length=1)


class ManifestSheetInfo(BaseModel):
    name: str
    columns: list[str]
    row_count: int
    suggested_filename_column: str | None = None


class ManifestReadResponse(BaseModel):
    path: str
    sheets: list[ManifestSheetInfo]


class MatchResult(BaseModel):
    id: int
    article_ref: str
    document_ref: str
    source_filename: str | None = None
    match_type: str
    confidence: float
    article_title: str | None = None
    reason: str | None = None
    matching_snippets: list[dict[str, Any]] = Field(default_factory=list)
    evidence: dict[str, Any] = Field(default_factory=dict)
    citation: dict[str, Any] | None = None
    created_at_utc: str


class CandidateResult(BaseModel):
    id: int
    article_ref: str
    document_ref: str
    reason: str | None = None
    confidence: float | None = None
    match_count: int | None = None
