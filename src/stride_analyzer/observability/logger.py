from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from stride_analyzer.utils.artifact_store import ArtifactStore


class EventLogger:
    """Appends structured pipeline events to a per-run JSONL file.

    Every event is also kept in ``events``; without a store that in-memory
    list is the only record.
    """

    def __init__(
        self,
        store: Optional[ArtifactStore] = None,
        run_id: Optional[str] = None,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.enabled = enabled
        self.run_id = run_id
        self.events: List[Dict[str, Any]] = []
        self.path = self._resolve_path()

    def _resolve_path(self) -> Optional[Path]:
        if self.store is None or not self.enabled:
            return None
        path = self.store.path("observability", "events.jsonl")
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def log(self, event_type: str, **fields: Any) -> None:
        if not self.enabled:
            return
        event: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "event_type": event_type,
        }
        if self.store is not None:
            event["analysis_id"] = self.store.analysis_id
        if self.run_id:
            event["run_id"] = self.run_id
        event.update(fields)
        self.events.append(event)
        if self.path is None:
            return
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(event, ensure_ascii=True, default=str))
            handle.write("\n")

    def stage_start(self, stage: str, **fields: Any) -> None:
        self.log("stage.start", stage=stage, **fields)

    def stage_end(self, stage: str, status: str = "ok", **fields: Any) -> None:
        self.log("stage.end", stage=stage, status=status, **fields)

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [event for event in self.events if event["event_type"] == event_type]
