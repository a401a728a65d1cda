from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


class LLMProviderEnum(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TRANSLATIONMATCHER_", extra="ignore")

    repo_root: Path = Field(default_factory=_default_repo_root)
    data_dir: Path | None = None

    # LLM Provider Configuration
    llm_provider: LLMProviderEnum = LLMProviderEnum.OPENAI
    ollama_base_url: str = "http://localhost:11434"
    llm_timeout_s: float = 300.0

    # Corpus languages, as written into oracle prompts
    target_language: str = "Brazilian Portuguese"
    source_language: str = "French or English"

    # Extraction
    corpus_suffixes: tuple[str, ...] = (".pdf", ".txt")
    min_text_chars: int = 50

    # Lexical candidate search
    snippets_min: int = 2
    snippets_max: int = 4
    min_term_length: int = 3  # tokens of this length or shorter are dropped
    partial_match_threshold: float = 0.4
    top_candidates: int = 3

    # Verification
    verification_min_confidence: float = 0.5
    evidence_fallback_ratio: float = 0.5

    # Prompt truncation (characters)
    index_text_chars: int = 15000
    snippet_text_chars: int = 6000
    verify_text_chars: int = 8000

    # Optional passes
    enable_document_indexing: bool = True
    enable_citations: bool = True

    # Log stream
    log_queue_maxsize: int = 1000

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir or (self.repo_root / "data")

    @property
    def db_path(self) -> Path:
        return self.resolved_data_dir / "translation-matcher.sqlite3"


# Singleton instance - import this instead of creating Settings()
settings = Settings()
