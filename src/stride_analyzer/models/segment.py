from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SegmentKind(str, Enum):
    COMPONENT = "component"
    METADATA = "metadata"
    CONNECTION_GROUP = "connection_group"


@dataclass(frozen=True)
class Segment:
    kind: SegmentKind
    content: str

    def tagged(self) -> str:
        """Content prefixed with its kind tag, e.g. ``[CONNECTION_GROUP]``."""
        return f"[{self.kind.value.upper()}]\n{self.content}"
