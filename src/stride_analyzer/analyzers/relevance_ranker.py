from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import List, Optional, Sequence

import numpy as np

from stride_analyzer.agents.base import EmbeddingClient
from stride_analyzer.clients.call_pacer import CallPacer, CancellationToken
from stride_analyzer.clients.errors import PipelineCancelled
from stride_analyzer.observability.logger import EventLogger

logger = logging.getLogger(__name__)


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    a = np.asarray(vec_a, dtype=float)
    b = np.asarray(vec_b, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"embedding dimensions differ: {a.shape} vs {b.shape}")
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


class RelevanceRanker:
    def __init__(
        self,
        client: EmbeddingClient,
        event_logger: EventLogger | None = None,
        pacer: Optional[CallPacer] = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.client = client
        self.event_logger = event_logger
        self.pacer = pacer
        self.cancel_token = cancel_token

    def _embed(self, text: str) -> List[float]:
        slot = self.pacer.slot(self.cancel_token) if self.pacer else nullcontext()
        with slot:
            return self.client.embed(text)

    def rank(self, query: str, chunks: List[str], top_k: int = 3) -> List[str]:
        """Top-k chunks by cosine similarity to ``query``, first-k on failure."""
        if top_k <= 0 or not chunks:
            return []
        try:
            query_vec = self._embed(query)
            # one request per chunk keeps each call small for the rate limiter
            scores = [cosine_similarity(query_vec, self._embed(chunk)) for chunk in chunks]
        except PipelineCancelled:
            raise
        except Exception as exc:
            logger.error("Error finding relevant chunks: %s", exc)
            if self.event_logger:
                self.event_logger.log("ranker.fallback", error=str(exc), chunk_count=len(chunks))
            return chunks[:top_k]

        order = sorted(range(len(chunks)), key=lambda i: (-scores[i], i))
        return [chunks[i] for i in order[:top_k]]
