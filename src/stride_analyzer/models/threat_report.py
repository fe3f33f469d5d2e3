"""STRIDE analysis report models.

Every report produced by the pipeline (per segment, per batch or final) is an
``AnalysisReport``. Validation normalizes whatever the model returned into the
canonical shape: six STRIDE categories in a fixed order, title-cased
severities and priorities, string-only list entries. When the model output
cannot be turned into a report at all, a ``DegradedResult`` takes its place.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


STRIDE_TITLES = (
    "Spoofing",
    "Tampering",
    "Repudiation",
    "Information Disclosure",
    "Denial of Service",
    "Elevation of Privilege",
)

DEGRADED_SUMMARY = "Error in analysis output format. Please check server logs."


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Level(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


def _normalize_level(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text in ("critical", "high"):
        return Level.HIGH.value
    if text in ("low", "info", "informational"):
        return Level.LOW.value
    return Level.MEDIUM.value


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _as_text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    items = []
    for item in value:
        if isinstance(item, dict):
            # {"name": "API Gateway", ...} is a common model variation
            item = item.get("name") or item.get("title") or _as_text(item)
        text = _as_text(item).strip()
        if text:
            items.append(text)
    return items


class _ReportModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Risk(_ReportModel):
    description: str = ""
    severity: Level = Level.MEDIUM
    remediation: str = ""
    technical_notes: Optional[str] = Field(default=None, alias="technicalNotes")

    @field_validator("description", "remediation", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _as_text(v)

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v: Any) -> str:
        return _normalize_level(v)

    @field_validator("technical_notes", mode="before")
    @classmethod
    def coerce_notes(cls, v: Any) -> Optional[str]:
        return _as_text(v) if v is not None else None


class Recommendation(_ReportModel):
    title: str = ""
    description: str = ""
    priority: Level = Level.MEDIUM

    @field_validator("title", "description", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _as_text(v)

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> str:
        return _normalize_level(v)


class StrideCategory(_ReportModel):
    title: str = ""
    description: str = ""
    risks: List[Risk] = Field(default_factory=list)

    @field_validator("title", "description", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _as_text(v)

    @field_validator("risks", mode="before")
    @classmethod
    def coerce_risks(cls, v: Any) -> List[Any]:
        if v is None:
            return []
        if isinstance(v, dict):
            return [v]
        return [item for item in v if isinstance(item, dict)] if isinstance(v, list) else []


def canonical_title(title: str) -> Optional[str]:
    """Map a model-supplied title ("Spoofing Threats", "DoS") to a STRIDE title."""
    lowered = (title or "").strip().lower()
    if not lowered:
        return None
    for canonical in STRIDE_TITLES:
        if canonical.lower() in lowered:
            return canonical
    aliases = {
        "dos": "Denial of Service",
        "denial": "Denial of Service",
        "information": "Information Disclosure",
        "disclosure": "Information Disclosure",
        "elevation": "Elevation of Privilege",
        "privilege": "Elevation of Privilege",
        "spoof": "Spoofing",
        "tamper": "Tampering",
        "repudiat": "Repudiation",
    }
    for alias, canonical in aliases.items():
        if alias in lowered:
            return canonical
    return None


def canonicalize_categories(categories: List[StrideCategory]) -> List[StrideCategory]:
    """Return exactly six categories in STRIDE order, merging duplicates."""
    merged: Dict[str, StrideCategory] = {
        title: StrideCategory(title=title) for title in STRIDE_TITLES
    }
    for category in categories:
        title = canonical_title(category.title) or canonical_title(category.description)
        if title is None:
            if category.risks:
                logger.warning(
                    "Dropping %d risk(s) under unrecognized category %r", len(category.risks), category.title
                )
            continue
        target = merged[title]
        merged[title] = StrideCategory(
            title=title,
            description=target.description or category.description,
            risks=[*target.risks, *category.risks],
        )
    return [merged[title] for title in STRIDE_TITLES]


class AnalysisReport(_ReportModel):
    summary: str = ""
    components: List[str] = Field(default_factory=list)
    data_flows: List[str] = Field(default_factory=list, alias="dataFlows")
    keywords: List[str] = Field(default_factory=list)
    stride_categories: List[StrideCategory] = Field(
        default_factory=list, alias="strideCategories", validate_default=True
    )
    recommendations: List[Recommendation] = Field(default_factory=list)
    timestamp: Optional[str] = None

    @field_validator("summary", mode="before")
    @classmethod
    def coerce_summary(cls, v: Any) -> str:
        return _as_text(v)

    @field_validator("components", "data_flows", "keywords", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> List[str]:
        return _as_text_list(v)

    @field_validator("stride_categories", mode="before")
    @classmethod
    def drop_non_objects(cls, v: Any) -> List[Any]:
        if isinstance(v, dict):
            # {"Spoofing": {...}, "Tampering": {...}} keyed by title
            return [
                {"title": key, **(value if isinstance(value, dict) else {"description": value})}
                for key, value in v.items()
            ]
        return [item for item in v if isinstance(item, dict)] if isinstance(v, list) else []

    @field_validator("stride_categories", mode="after")
    @classmethod
    def ensure_six_categories(cls, v: List[StrideCategory]) -> List[StrideCategory]:
        return canonicalize_categories(v)

    @field_validator("recommendations", mode="before")
    @classmethod
    def coerce_recommendations(cls, v: Any) -> List[Any]:
        if v is None:
            return []
        return [item for item in v if isinstance(item, dict)] if isinstance(v, list) else []

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> Optional[str]:
        return _as_text(v) or None

    def with_timestamp(self) -> "AnalysisReport":
        if self.timestamp:
            return self
        return self.model_copy(update={"timestamp": utc_now_iso()})

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


@dataclass(frozen=True)
class DegradedResult:
    """Placeholder for model output that could not be turned into a report."""

    error: str
    error_message: str
    raw_text: str = ""
    timestamp: str = field(default_factory=utc_now_iso)
    summary: str = DEGRADED_SUMMARY

    def with_timestamp(self) -> "DegradedResult":
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "errorMessage": self.error_message,
            "timestamp": self.timestamp,
            "summary": self.summary,
        }


RecoveryResult = Union[AnalysisReport, DegradedResult]


def is_degraded(result: RecoveryResult) -> bool:
    return isinstance(result, DegradedResult)


def serialize_result(result: RecoveryResult) -> str:
    return json.dumps(result.to_dict(), ensure_ascii=False)


@dataclass
class AnalysisOutcome:
    result: RecoveryResult
    processed_chunks: int
    total_chunks: int
    error: Optional[str] = None
    degraded_segments: List[int] = field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "result": serialize_result(self.result),
            "processedChunks": self.processed_chunks,
            "totalChunks": self.total_chunks,
        }
        if self.error:
            body["error"] = self.error
        return body
