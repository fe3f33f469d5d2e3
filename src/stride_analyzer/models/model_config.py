from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ClientConfig:
    api_key: str
    base_url: str = "https://api.openai.com/v1"
    segment_model: str = "gpt-4o-mini"
    reduce_model: str = "gpt-4o"
    embedding_model: str = "text-embedding-3-small"
    timeout_sec: float = 120.0
    max_retries: int = 5

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "ClientConfig":
        llm = settings.get("llm", {}) or {}
        return cls(
            api_key=llm.get("api_key") or "",
            base_url=llm.get("base_url") or cls.base_url,
            segment_model=llm.get("model_segment") or cls.segment_model,
            reduce_model=llm.get("model_reduce") or cls.reduce_model,
            embedding_model=llm.get("model_embedding") or cls.embedding_model,
            timeout_sec=float(llm.get("timeout_sec", cls.timeout_sec)),
            max_retries=int(llm.get("max_retries", cls.max_retries)),
        )


@dataclass(frozen=True)
class PipelineConfig:
    chunk_size: int = 4000
    chunk_overlap: int = 500
    process_chunk_size: int = 8000
    process_chunk_overlap: int = 800
    batch_size: int = 10
    min_delay_sec: float = 1.0
    max_delay_sec: float = 2.0
    top_k: int = 3
    artifacts_dir: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "PipelineConfig":
        pipeline = settings.get("pipeline", {}) or {}
        analysis = settings.get("analysis", {}) or {}
        config = cls(
            chunk_size=int(pipeline.get("chunk_size", cls.chunk_size)),
            chunk_overlap=int(pipeline.get("chunk_overlap", cls.chunk_overlap)),
            process_chunk_size=int(pipeline.get("process_chunk_size", cls.process_chunk_size)),
            process_chunk_overlap=int(pipeline.get("process_chunk_overlap", cls.process_chunk_overlap)),
            batch_size=int(pipeline.get("batch_size", cls.batch_size)),
            min_delay_sec=float(pipeline.get("min_delay_sec", cls.min_delay_sec)),
            max_delay_sec=float(pipeline.get("max_delay_sec", cls.max_delay_sec)),
            top_k=int(pipeline.get("top_k", cls.top_k)),
            artifacts_dir=analysis.get("artifacts_dir"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.batch_size < 2:
            raise ValueError(f"batch_size must be >= 2, got {self.batch_size}")
        if self.chunk_size < 1 or self.process_chunk_size < 1:
            raise ValueError("chunk sizes must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        if not 0 <= self.process_chunk_overlap < self.process_chunk_size:
            raise ValueError("process_chunk_overlap must be smaller than process_chunk_size")
        if not 0 <= self.min_delay_sec <= self.max_delay_sec:
            raise ValueError("delay bounds must satisfy 0 <= min_delay_sec <= max_delay_sec")
