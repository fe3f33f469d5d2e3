from __future__ import annotations

from typing import Any, Dict, Optional

from stride_analyzer.clients.openai_client import OpenAIClient
from stride_analyzer.models.model_config import ClientConfig
from stride_analyzer.observability.logger import EventLogger


def build_llm_client(
    settings: Dict[str, Any],
    event_logger: EventLogger | None = None,
) -> Optional[OpenAIClient]:
    """
    Build the remote analysis/embedding client from settings.

    Returns None when ``llm.enabled`` is false. The API key is read from
    ``llm.api_key`` (or ``OPENAI_API_KEY`` via ``load_settings``) once, here.
    """
    llm_conf = settings.get("llm", {}) or {}
    if not llm_conf.get("enabled", True):
        return None

    config = ClientConfig.from_settings(settings)
    if not config.api_key:
        raise ValueError(
            "No LLM client configured. Provide llm.api_key in settings "
            "or set the OPENAI_API_KEY environment variable."
        )
    return OpenAIClient(config, event_logger=event_logger)
