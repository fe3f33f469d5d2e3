from __future__ import annotations

import time
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, TypeVar

from stride_analyzer.agents.base import LLMClient
from stride_analyzer.agents.batch_reducer import BatchReducer
from stride_analyzer.agents.segment_analyzer import SegmentAnalyzer
from stride_analyzer.analyzers.relevance_ranker import RelevanceRanker
from stride_analyzer.analyzers.segmenter import segment, sliding_window_chunks
from stride_analyzer.clients.call_pacer import CallPacer, CancellationToken
from stride_analyzer.clients.errors import PipelineCancelled, PipelineError, RemoteCallError
from stride_analyzer.models.model_config import ClientConfig, PipelineConfig
from stride_analyzer.models.threat_report import AnalysisOutcome, is_degraded
from stride_analyzer.observability.logger import EventLogger
from stride_analyzer.telemetry import set_run_context, span
from stride_analyzer.telemetry.llm_instrumentation import InstrumentedLLMClient
from stride_analyzer.utils.artifact_store import ArtifactStore

T = TypeVar("T")


class Orchestrator:
    def __init__(
        self,
        settings: Dict[str, Any],
        llm_client: Optional[LLMClient] = None,
        pacer: Optional[CallPacer] = None,
    ) -> None:
        self.settings = settings
        self.llm_client = llm_client
        self.config = PipelineConfig.from_settings(settings)
        self.models = ClientConfig.from_settings(settings)
        # shared across runs so concurrent requests draw from one rate budget
        self.pacer = pacer or CallPacer(self.config.min_delay_sec, self.config.max_delay_sec)

    def _event_logger(self, text: str) -> tuple[EventLogger, Optional[ArtifactStore]]:
        analysis_id = ArtifactStore.compute_analysis_id(text)
        run_id = set_run_context(analysis_id)
        store = None
        if self.config.artifacts_dir:
            store = ArtifactStore(self.config.artifacts_dir, analysis_id, run_id=run_id)
            store.ensure_dir("report")
        obs_conf = self.settings.get("observability", {}) if isinstance(self.settings, dict) else {}
        event_logger = EventLogger(store, run_id=run_id, enabled=obs_conf.get("enabled", True))
        return event_logger, store

    def _run_stage(self, stage: str, event_logger: EventLogger, fn: Callable[[], T], **fields: Any) -> T:
        event_logger.stage_start(stage, **fields)
        started = time.monotonic()
        try:
            with span(f"stage.{stage}", stage=stage):
                result = fn()
        except PipelineCancelled:
            event_logger.stage_end(stage, status="cancelled")
            event_logger.log("run.end", status="cancelled", failed_stage=stage)
            raise
        except RemoteCallError as exc:
            event_logger.stage_end(stage, status="failed", error=str(exc), error_type=type(exc).__name__)
            event_logger.log("run.end", status="failed", failed_stage=stage)
            raise PipelineError(stage, exc) from exc
        event_logger.stage_end(stage, duration_sec=round(time.monotonic() - started, 3))
        return result

    def analyze_security(self, text: str, cancel_token: CancellationToken | None = None) -> AnalysisOutcome:
        """Segment, analyze and consolidate ``text`` into one STRIDE report."""
        if not text or not text.strip():
            raise ValueError("Text is required")
        if self.llm_client is None:
            raise ValueError("LLM client is not configured")

        event_logger, store = self._event_logger(text)
        llm_client: LLMClient = self.llm_client
        if store is not None:
            llm_client = InstrumentedLLMClient(self.llm_client, store, event_logger)
        event_logger.log("run.start", text_chars=len(text))

        event_logger.stage_start("segmentation")
        with span("stage.segmentation", stage="segmentation"):
            segments = segment(text, self.config.chunk_size, self.config.chunk_overlap, event_logger=event_logger)
        kinds = Counter(s.kind.value for s in segments)
        event_logger.stage_end("segmentation", segment_count=len(segments), kinds=dict(kinds))

        analyzer = SegmentAnalyzer(
            llm_client,
            self.pacer,
            model=self.models.segment_model,
            event_logger=event_logger,
            cancel_token=cancel_token,
        )
        partials = self._run_stage(
            "segment_analysis",
            event_logger,
            lambda: analyzer.analyze(segments),
            segment_count=len(segments),
        )

        reducer = BatchReducer(
            llm_client,
            self.pacer,
            batch_size=self.config.batch_size,
            model=self.models.reduce_model,
            event_logger=event_logger,
            cancel_token=cancel_token,
        )
        final = self._run_stage(
            "reduction",
            event_logger,
            lambda: reducer.reduce(partials),
            report_count=len(partials),
        )

        degraded = [index for index, result in enumerate(partials, start=1) if is_degraded(result)]
        outcome = AnalysisOutcome(
            result=final,
            processed_chunks=len(partials),
            total_chunks=len(segments),
            error=_degradation_note(final, degraded, len(partials)),
            degraded_segments=degraded,
        )
        if store is not None:
            store.write_json("report/threat_report.json", final.to_dict())
        event_logger.log(
            "run.end",
            status="degraded" if outcome.error else "ok",
            degraded_segments=degraded,
            reduce_calls=reducer.calls_made,
        )
        return outcome

    def process_text(self, text: str, query: Optional[str] = None) -> Dict[str, List[str]]:
        if not text:
            raise ValueError("Text is required")
        chunks = sliding_window_chunks(
            text,
            self.config.process_chunk_size,
            self.config.process_chunk_overlap,
        )
        if not query:
            return {"chunks": chunks}
        if self.llm_client is None:
            return {"chunks": chunks[: self.config.top_k]}
        ranker = RelevanceRanker(self.llm_client, pacer=self.pacer)
        return {"chunks": ranker.rank(query, chunks, top_k=self.config.top_k)}


def _degradation_note(final: Any, degraded: List[int], total: int) -> Optional[str]:
    if is_degraded(final):
        return f"JSON parsing failed: {final.error_message}"
    if degraded:
        listed = ", ".join(str(i) for i in degraded)
        return (
            f"Could not structure the analysis of segment(s) {listed} of {total}; "
            "they were consolidated as error records."
        )
    return None
