"""Tests for the LLM-backed oracle, JSON parsing and result validation."""
from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest

from conftest import ScriptedOracle
from translationmatcher.errors import ExternalCallError, OracleResponseError, PipelineFatalError
from translationmatcher.llm.providers import LLMResponse
from translationmatcher.oracle.client import LLMOracle, build_oracle, extract_json_object, request
from translationmatcher.oracle.prompts import SYSTEM_ROLES
from translationmatcher.oracle.results import CitationResult, SourceIndex, TaskKind
from translationmatcher.schemas import AIConfig
from translationmatcher.settings import LLMProviderEnum, Settings


def _response(content: str) -> LLMResponse:
    return LLMResponse(content=content, model="m", total_tokens=2)


def _oracle_with(content: str | Exception) -> tuple[LLMOracle, MagicMock]:
    provider = MagicMock()
    if isinstance(content, Exception):
        provider.chat_completion.side_effect = content
    else:
        provider.chat_completion.return_value = _response(content)
    models = {kind: f"model-{kind.value}" for kind in TaskKind}
    return LLMOracle(provider, models=models, timeout=12.0), provider


class TestExtractJsonObject:
    def test_plain_json(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        text = 'Here you go:\n```json\n{"snippets": []}\n```\nThanks'
        assert extract_json_object(text) == {"snippets": []}

    def test_json_inside_prose(self):
        assert extract_json_object('Result: {"is_match": false} done') == {"is_match": False}

    def test_array_is_not_an_object(self):
        assert extract_json_object("[1, 2]") is None

    def test_garbage_and_empty(self):
        assert extract_json_object("no json here") is None
        assert extract_json_object("   ") is None


class TestLLMOracle:
    def test_invoke_uses_task_model_and_json_mode(self):
        oracle, provider = _oracle_with('{"document_summary": "x"}')

        result = oracle.invoke(TaskKind.INDEX_SOURCE, "You are an archivist.", "TEXT")

        assert result == {"document_summary": "x"}
        kwargs = provider.chat_completion.call_args.kwargs
        assert kwargs["model"] == "model-index_source"
        assert kwargs["json_mode"] is True
        assert kwargs["timeout"] == 12.0
        assert kwargs["messages"][0] == {"role": "system", "content": "You are an archivist."}
        assert kwargs["messages"][1] == {"role": "user", "content": "TEXT"}

    def test_empty_response_is_oracle_error(self):
        oracle, _ = _oracle_with("  ")
        with pytest.raises(OracleResponseError, match="empty"):
            oracle.invoke(TaskKind.VERIFY_MATCH, "role", "prompt")

    def test_non_json_response_is_oracle_error(self):
        oracle, _ = _oracle_with("I think these are the same text.")
        with pytest.raises(OracleResponseError) as exc_info:
            oracle.invoke(TaskKind.VERIFY_MATCH, "role", "prompt")
        assert exc_info.value.raw == "I think these are the same text."
        assert exc_info.value.task_kind == "verify_match"

    def test_provider_failure_is_external_call_error(self):
        oracle, _ = _oracle_with(TimeoutError("read timeout"))
        with pytest.raises(ExternalCallError, match="read timeout"):
            oracle.invoke(TaskKind.EXTRACT_SNIPPETS, "role", "prompt")


class TestRequest:
    def test_validates_into_result_type(self):
        oracle = ScriptedOracle({TaskKind.INDEX_SOURCE: {"documentSummary": "Resumo", "keywords": "luz"}})
        result = request(oracle, TaskKind.INDEX_SOURCE, "prompt", SourceIndex)
        assert result.document_summary == "Resumo"
        assert result.keywords == ["luz"]

    def test_default_system_role_per_task(self):
        oracle = MagicMock()
        oracle.invoke.return_value = {"chicago_bibliography": "Entry."}
        request(oracle, TaskKind.GENERATE_CITATION, "prompt", CitationResult)
        oracle.invoke.assert_called_once_with(
            TaskKind.GENERATE_CITATION, SYSTEM_ROLES[TaskKind.GENERATE_CITATION], "prompt"
        )

    def test_missing_required_field_is_oracle_error(self):
        oracle = ScriptedOracle({TaskKind.INDEX_SOURCE: {"keywords": []}})
        with pytest.raises(OracleResponseError, match="invalid result"):
            request(oracle, TaskKind.INDEX_SOURCE, "prompt", SourceIndex)


class TestBuildOracle:
    @patch.dict(os.environ, {"OPENAI_API_KEY": ""})
    def test_maps_models_per_task(self, tmp_path):
        ai = AIConfig(indexing_model="idx", matching_model="match", verification_model="verify", api_key="sk-test")
        oracle = build_oracle(ai, Settings(data_dir=tmp_path, llm_provider=LLMProviderEnum.OPENAI))

        assert oracle.model_for(TaskKind.INDEX_SOURCE) == "idx"
        assert oracle.model_for(TaskKind.INDEX_TARGET) == "idx"
        assert oracle.model_for(TaskKind.EXTRACT_SNIPPETS) == "match"
        assert oracle.model_for(TaskKind.VERIFY_MATCH) == "verify"
        assert oracle.model_for(TaskKind.GENERATE_CITATION) == "verify"

    @patch.dict(os.environ, {"OPENAI_API_KEY": ""})
    def test_missing_key_is_fatal(self, tmp_path):
        with pytest.raises(PipelineFatalError, match="OPENAI_API_KEY"):
            build_oracle(AIConfig(), Settings(data_dir=tmp_path, llm_provider=LLMProviderEnum.OPENAI))

    @patch.dict(os.environ, {"ANTHROPIC_API_KEY": "env-key"})
    def test_env_key_used_when_config_has_none(self, tmp_path):
        oracle = build_oracle(AIConfig(), Settings(data_dir=tmp_path, llm_provider=LLMProviderEnum.ANTHROPIC))
        assert oracle.model_for(TaskKind.VERIFY_MATCH) == "gpt-4o"
