"""
Oracle collaborator: prompt in, structured result out.

``Oracle.invoke`` is the whole boundary the pipeline depends on. The LLM-backed
implementation picks the model for each task kind, asks the provider for a
JSON object and parses it leniently; ``request`` then validates the payload
against the task's result model.
"""
from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from translationmatcher.errors import ExternalCallError, OracleResponseError, PipelineFatalError
from translationmatcher.llm.providers import LLMProvider, get_llm_client
from translationmatcher.oracle.prompts import SYSTEM_ROLES
from translationmatcher.oracle.results import TaskKind
from translationmatcher.schemas import AIConfig
from translationmatcher.settings import Settings

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)

_code_block_re = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


class Oracle(ABC):
    @abstractmethod
    def invoke(self, task_kind: TaskKind, system_role: str, prompt: str) -> dict[str, Any]:
        """Run one task and return its JSON object.

        Raises:
            ExternalCallError: the call itself failed.
            OracleResponseError: the response was empty or not a JSON object.
        """


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Extract a JSON object from an LLM response, handling fences and prose."""
    text = text.strip()
    if not text:
        return None

    candidates = [text]
    candidates.extend(m.strip() for m in _code_block_re.findall(text))
    first_brace = text.find("{")
    last_brace = text.rfind("}")
    if first_brace != -1 and last_brace > first_brace:
        candidates.append(text[first_brace : last_brace + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


class LLMOracle(Oracle):
    """Oracle backed by a chat-completion provider."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        models: dict[TaskKind, str],
        timeout: float = 300.0,
        temperature: float = 0.2,
    ) -> None:
        self._provider = provider
        self._models = models
        self._timeout = timeout
        self._temperature = temperature

    def model_for(self, task_kind: TaskKind) -> str:
        return self._models[task_kind]

    def invoke(self, task_kind: TaskKind, system_role: str, prompt: str) -> dict[str, Any]:
        model = self.model_for(task_kind)
        logger.info("Calling %s for %s (prompt: %d chars)", model, task_kind.value, len(prompt))
        started = time.monotonic()
        try:
            response = self._provider.chat_completion(
                messages=[
                    {"role": "system", "content": system_role},
                    {"role": "user", "content": prompt},
                ],
                model=model,
                temperature=self._temperature,
                timeout=self._timeout,
                json_mode=True,
            )
        except Exception as e:  # noqa: BLE001
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.warning("%s call failed after %dms: %s", task_kind.value, elapsed_ms, e)
            raise ExternalCallError(f"{task_kind.value} call to {model} failed: {e}") from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info("Response for %s in %dms (tokens: %s)", task_kind.value, elapsed_ms, response.total_tokens or "n/a")

        if not response.content.strip():
            raise OracleResponseError(task_kind.value, "empty response")
        payload = extract_json_object(response.content)
        if payload is None:
            raise OracleResponseError(task_kind.value, "response is not a JSON object", raw=response.content[:2000])
        return payload


def request(
    oracle: Oracle,
    task_kind: TaskKind,
    prompt: str,
    result_type: type[ResultT],
    *,
    system_role: str | None = None,
) -> ResultT:
    """Invoke the oracle and validate the result against ``result_type``."""
    payload = oracle.invoke(task_kind, system_role or SYSTEM_ROLES[task_kind], prompt)
    try:
        return result_type.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors()[:5])
        raise OracleResponseError(
            task_kind.value,
            f"invalid result ({fields})",
            raw=json.dumps(payload, ensure_ascii=False, default=str)[:2000],
        ) from e


def build_oracle(ai: AIConfig, settings: Settings) -> LLMOracle:
    """Build the LLM oracle for one run.

    Raises:
        PipelineFatalError: the provider is not configured (e.g. no API key).
    """
    try:
        provider = get_llm_client(
            settings.llm_provider.value,
            api_key=ai.api_key,
            ollama_base_url=settings.ollama_base_url,
        )
    except ValueError as e:
        raise PipelineFatalError(str(e)) from e

    models = {
        TaskKind.INDEX_SOURCE: ai.indexing_model,
        TaskKind.INDEX_TARGET: ai.indexing_model,
        TaskKind.EXTRACT_SNIPPETS: ai.matching_model,
        TaskKind.VERIFY_MATCH: ai.verification_model,
        TaskKind.GENERATE_CITATION: ai.verification_model,
    }
    return LLMOracle(provider, models=models, timeout=settings.llm_timeout_s)
