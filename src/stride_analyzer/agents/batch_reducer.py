from __future__ import annotations

from typing import List, Optional, Sequence

from stride_analyzer.agents.base import LLMClient
from stride_analyzer.agents.prompts import (
    FINAL_CONSOLIDATION_PROMPT,
    INTERIM_CONSOLIDATION_PROMPT,
    render,
)
from stride_analyzer.clients.call_pacer import CallPacer, CancellationToken
from stride_analyzer.models.threat_report import (
    RecoveryResult,
    is_degraded,
    serialize_result,
    utc_now_iso,
)
from stride_analyzer.observability.logger import EventLogger
from stride_analyzer.telemetry import llm_context, span
from stride_analyzer.utils.llm_json import recover_report

CHUNK_SEPARATOR = "\n\n====CHUNK SEPARATOR====\n\n"
BATCH_SEPARATOR = "\n\n====BATCH SEPARATOR====\n\n"
# a batch of one would never shrink the number of reports
MIN_BATCH_SIZE = 2


def make_batches(items: Sequence[str], batch_size: int) -> List[List[str]]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]


class BatchReducer:
    """Consolidates many partial reports into one.

    Reports are consolidated ``batch_size`` at a time into interim reports,
    and the interim reports are consolidated once more into the final report.
    No request ever carries more than ``batch_size`` serialized reports; if
    there are more interim reports than that, they are batched again first.
    Degraded results travel as their error record so the model sees which
    parts of the input could not be analyzed.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        pacer: CallPacer,
        batch_size: int = 10,
        model: Optional[str] = None,
        event_logger: EventLogger | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        if batch_size < MIN_BATCH_SIZE:
            raise ValueError(f"batch_size must be >= {MIN_BATCH_SIZE}, got {batch_size}")
        self.llm_client = llm_client
        self.pacer = pacer
        self.batch_size = batch_size
        self.model = model
        self.event_logger = event_logger
        self.cancel_token = cancel_token
        self.calls_made = 0

    def _consolidate(self, template: str, content: str, step: str, index: int, total: int) -> RecoveryResult:
        prompt = render(template, index=index, total=total, timestamp=utc_now_iso())
        with llm_context(step, item_id=f"{index:03d}"):
            with span(f"reduce.{step}", batch_index=index, batch_total=total):
                with self.pacer.slot(self.cancel_token):
                    response = self.llm_client.complete(prompt, content, model=self.model)
        self.calls_made += 1
        result = recover_report(response)
        if self.event_logger:
            self.event_logger.log(
                "reduce.consolidated",
                step=step,
                index=index,
                total=total,
                input_chars=len(content),
                degraded=is_degraded(result),
            )
        return result

    def _reduce_batches(self, reports: Sequence[RecoveryResult]) -> List[RecoveryResult]:
        batches = make_batches([serialize_result(r) for r in reports], self.batch_size)
        if self.event_logger:
            self.event_logger.log("reduce.batches", report_count=len(reports), batch_count=len(batches))
        return [
            self._consolidate(INTERIM_CONSOLIDATION_PROMPT, CHUNK_SEPARATOR.join(batch), "batch", index, len(batches))
            for index, batch in enumerate(batches, start=1)
        ]

    def reduce(self, reports: Sequence[RecoveryResult]) -> RecoveryResult:
        if not reports:
            raise ValueError("No chunks could be processed")
        if len(reports) == 1:
            return reports[0].with_timestamp()

        level = self._reduce_batches(reports)
        while len(level) > self.batch_size:
            level = self._reduce_batches(level)
        if len(level) == 1:
            return level[0].with_timestamp()

        final = self._consolidate(
            FINAL_CONSOLIDATION_PROMPT,
            BATCH_SEPARATOR.join(serialize_result(r) for r in level),
            "final",
            1,
            len(level),
        )
        return final.with_timestamp()
