from __future__ import annotations

from stride_analyzer.telemetry.tracing import (
    get_llm_context,
    init_telemetry,
    llm_context,
    set_run_context,
    span,
)

__all__ = [
    "get_llm_context",
    "init_telemetry",
    "llm_context",
    "set_run_context",
    "span",
]
