from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml


def load_settings(path: str | Path | None) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    if path:
        path = Path(path)
        if path.exists():
            with path.open("r", encoding="utf-8") as handle:
                settings = yaml.safe_load(handle) or {}
    apply_env_overrides(settings)
    return settings


def apply_env_overrides(settings: Dict[str, Any]) -> Dict[str, Any]:
    llm = settings.setdefault("llm", {})
    api_key = os.environ.get("OPENAI_API_KEY")
    if api_key and not llm.get("api_key"):
        llm["api_key"] = api_key
    base_url = os.environ.get("OPENAI_BASE_URL")
    if base_url:
        llm["base_url"] = base_url
    artifacts_dir = os.environ.get("ARTIFACTS_DIR")
    if artifacts_dir:
        settings.setdefault("analysis", {})["artifacts_dir"] = artifacts_dir
    return settings
