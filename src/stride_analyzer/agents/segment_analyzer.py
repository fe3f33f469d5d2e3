from __future__ import annotations

from typing import List, Optional, Sequence

from stride_analyzer.agents.base import LLMClient
from stride_analyzer.agents.prompts import SEGMENT_ANALYSIS_PROMPT, render
from stride_analyzer.clients.call_pacer import CallPacer, CancellationToken
from stride_analyzer.models.segment import Segment
from stride_analyzer.models.threat_report import RecoveryResult, is_degraded, utc_now_iso
from stride_analyzer.observability.logger import EventLogger
from stride_analyzer.telemetry import llm_context, span
from stride_analyzer.utils.llm_json import recover_report


class SegmentAnalyzer:
    """Runs one STRIDE analysis call per segment, in input order.

    Degraded results are kept in place so that result ``i`` always belongs to
    segment ``i``.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        pacer: CallPacer,
        model: Optional[str] = None,
        event_logger: EventLogger | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.llm_client = llm_client
        self.pacer = pacer
        self.model = model
        self.event_logger = event_logger
        self.cancel_token = cancel_token

    def analyze_one(self, segment: Segment, index: int, total: int) -> RecoveryResult:
        prompt = render(SEGMENT_ANALYSIS_PROMPT, index=index, total=total, timestamp=utc_now_iso())
        with llm_context("segment", item_id=f"{index:03d}"):
            with span("segment.analyze", segment_index=index, segment_total=total, segment_kind=segment.kind.value):
                with self.pacer.slot(self.cancel_token) as waited:
                    response = self.llm_client.complete(prompt, segment.tagged(), model=self.model)
        result = recover_report(response)
        if self.event_logger:
            self.event_logger.log(
                "segment.analyzed",
                index=index,
                total=total,
                kind=segment.kind.value,
                content_chars=len(segment.content),
                paced_wait_sec=round(waited, 3),
                degraded=is_degraded(result),
            )
        return result

    def analyze(self, segments: Sequence[Segment]) -> List[RecoveryResult]:
        total = len(segments)
        return [self.analyze_one(segment, index, total) for index, segment in enumerate(segments, start=1)]
