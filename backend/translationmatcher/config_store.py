from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from translationmatcher.schemas import PipelineConfig


def load_yaml(path: Path) -> dict[str, Any]:
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    return loaded if isinstance(loaded, dict) else {}


def load_pipeline_config(path: Path) -> PipelineConfig:
    """Read a run configuration (camelCase or snake_case keys) from YAML.

    Relative corpus and manifest paths are resolved against the YAML file's
    directory.
    """
    config = PipelineConfig.model_validate(load_yaml(path))
    base = path.resolve().parent

    def _resolve(value: str) -> str:
        p = Path(value).expanduser()
        return str(p if p.is_absolute() else base / p)

    config.source_corpus.pdf_folder = _resolve(config.source_corpus.pdf_folder)
    config.target_corpus.pdf_folder = _resolve(config.target_corpus.pdf_folder)
    config.target_corpus.manifest_path = _resolve(config.target_corpus.manifest_path)
    return config


def dump_pipeline_config(config: PipelineConfig) -> str:
    """YAML for a run configuration, camelCase keys, API key omitted."""
    data = config.model_dump(by_alias=True, exclude={"ai": {"api_key"}})
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
