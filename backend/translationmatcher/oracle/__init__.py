from translationmatcher.oracle.client import LLMOracle, Oracle, build_oracle, extract_json_object, request
from translationmatcher.oracle.results import (
    AnchorType,
    CitationResult,
    MatchType,
    SnippetExtraction,
    SnippetPayload,
    SourceIndex,
    TargetIndex,
    TaskKind,
    VerificationJudgment,
)

__all__ = [
    "Oracle",
    "LLMOracle",
    "build_oracle",
    "extract_json_object",
    "request",
    "TaskKind",
    "AnchorType",
    "MatchType",
    "SourceIndex",
    "TargetIndex",
    "SnippetExtraction",
    "SnippetPayload",
    "VerificationJudgment",
    "CitationResult",
]
