from __future__ import annotations

import time
import uuid
from typing import List, Optional

from stride_analyzer.agents.base import LLMClient
from stride_analyzer.observability.logger import EventLogger
from stride_analyzer.telemetry.tracing import get_llm_context, span
from stride_analyzer.utils.artifact_store import ArtifactStore
from stride_analyzer.utils.llm_json import describe_llm_failure


class InstrumentedLLMClient:
    """Model client wrapper that keeps every exchange as run artifacts.

    Each call writes ``llm_inputs/<step>_<item>_<id>.json`` before the request
    and ``llm_outputs/<step>_<item>_<id>.txt`` after it, where step and item
    come from the surrounding ``llm_context``. Remote failures are logged as
    ``llm.error`` and re-raised; output that will not parse as a report is
    logged as ``llm.parse_error``.
    """

    def __init__(
        self,
        base: LLMClient,
        store: ArtifactStore,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.base = base
        self.store = store
        self.event_logger = event_logger

    def _log(self, event_type: str, **fields) -> None:
        if self.event_logger:
            self.event_logger.log(event_type, **fields)

    def complete(self, system_prompt: str, user_content: str, model: Optional[str] = None) -> str:
        ctx = get_llm_context()
        step = ctx.get("step") or "llm"
        item = ctx.get("item_id") or "na"
        name = f"{step}_{item}_{uuid.uuid4().hex[:8]}"
        input_ref = self.store.relpath(f"llm_inputs/{name}.json")
        output_ref = self.store.relpath(f"llm_outputs/{name}.txt")
        common = {"llm_step": step, "item_id": item, "model": model or ""}

        self.store.write_json(
            f"llm_inputs/{name}.json",
            {"model": model, "system": system_prompt, "user": user_content},
        )
        self._log(
            "llm.input",
            ref=input_ref,
            system_chars=len(system_prompt or ""),
            user_chars=len(user_content or ""),
            **common,
        )

        started = time.monotonic()
        with span("llm.call", model=model or "") as sp:
            try:
                response = self.base.complete(system_prompt, user_content, model=model)
            except Exception as exc:
                self._log(
                    "llm.error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    status_code=getattr(exc, "status_code", None),
                    **common,
                )
                raise
            self.store.write_text(f"llm_outputs/{name}.txt", response)
            sp.add_event("llm.output", {"ref": output_ref})

        self._log(
            "llm.output",
            ref=output_ref,
            output_chars=len(response),
            duration_sec=round(time.monotonic() - started, 3),
            **common,
        )
        failure = describe_llm_failure(response)
        if failure:
            self._log("llm.parse_error", ref=output_ref, **failure, **common)
        return response

    def embed(self, text: str) -> List[float]:
        with span("llm.embed", input_chars=len(text or "")):
            return self.base.embed(text)
