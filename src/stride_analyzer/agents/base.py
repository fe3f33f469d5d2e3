from __future__ import annotations

from typing import List, Optional, Protocol


class LLMClient(Protocol):
    def complete(self, system_prompt: str, user_content: str, model: Optional[str] = None) -> str:
        ...


class EmbeddingClient(Protocol):
    def embed(self, text: str) -> List[float]:
        ...
