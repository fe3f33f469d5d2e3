from __future__ import annotations

import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

TRACER_NAME = "stride_analyzer"

_ANALYSIS_ID: ContextVar[str | None] = ContextVar("analysis_id", default=None)
_RUN_ID: ContextVar[str | None] = ContextVar("run_id", default=None)
_LLM_STEP: ContextVar[str | None] = ContextVar("llm_step", default=None)
_LLM_ITEM: ContextVar[str | None] = ContextVar("llm_item", default=None)


def init_telemetry(settings: Dict[str, Any]) -> bool:
    """Install an OTLP span exporter when ``telemetry.enabled`` and an endpoint are set."""
    conf = (settings or {}).get("telemetry") or {}
    if not conf.get("enabled"):
        return False
    endpoint = conf.get("otlp_endpoint") or os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        return False
    resource = Resource.create({"service.name": conf.get("service_name", "stride-analyzer")})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=endpoint, insecure=conf.get("otlp_insecure", True))
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True


def set_run_context(analysis_id: str, run_id: str | None = None) -> str:
    run_id = run_id or uuid.uuid4().hex
    _ANALYSIS_ID.set(analysis_id)
    _RUN_ID.set(run_id)
    return run_id


@contextmanager
def span(name: str, **attrs: Any):
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as current:
        for key, value in {**_context_attrs(), **attrs}.items():
            if value is not None:
                current.set_attribute(key, value)
        yield current


@contextmanager
def llm_context(step: str, item_id: str | None = None):
    """Tag remote calls made inside the block with the pipeline step and item."""
    token_step = _LLM_STEP.set(step)
    token_item = _LLM_ITEM.set(item_id)
    try:
        yield
    finally:
        _LLM_STEP.reset(token_step)
        _LLM_ITEM.reset(token_item)


def get_llm_context() -> Dict[str, Optional[str]]:
    return {"step": _LLM_STEP.get(), "item_id": _LLM_ITEM.get()}


def _context_attrs() -> Dict[str, Optional[str]]:
    return {
        "analysis_id": _ANALYSIS_ID.get(),
        "run_id": _RUN_ID.get(),
        "llm.step": _LLM_STEP.get(),
        "llm.item_id": _LLM_ITEM.get(),
    }
