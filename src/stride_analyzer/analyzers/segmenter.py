"""Structural segmentation of architecture descriptions.

Paragraphs are classified by vocabulary into components, metadata and
connections; connections sharing a (source, target) pair are grouped. When
the structural pass fails or yields nothing, the text is cut with a
recursive sliding-window splitter that prefers paragraph, then line, then
word boundaries.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from langchain_text_splitters import RecursiveCharacterTextSplitter

from stride_analyzer.models.segment import Segment, SegmentKind
from stride_analyzer.observability.logger import EventLogger

logger = logging.getLogger(__name__)

MIN_SEGMENT_CHARS = 10
METADATA_MAX_CHARS = 200
SEPARATORS = ["\n\n", "\n", " ", ""]

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n+")
_COMPONENT_RE = re.compile(
    r"Component:|Shape:|Entity:|Service:|Database:|API:|Server:|Client:|Interface:",
    re.IGNORECASE,
)
_CONNECTION_RE = re.compile(
    r"Connection:|Flow:|Relationship:|Link:|Arrow:|Data Flow:|Connects to:|"
    r"Interacts with:|Sends data to:|Receives data from:",
    re.IGNORECASE,
)
_METADATA_RE = re.compile(
    r"Label:|Description:|Metadata:|Properties:|Attributes:|Tag:|Info:",
    re.IGNORECASE,
)
_ARROW_RE = re.compile(r"<->|->|=>|<-|↔|→|←")
_CONNECTION_WORDS_RE = re.compile(
    r"connects|flow|sends data to|receives data from|interacts with",
    re.IGNORECASE,
)
_FROM_TO_RE = re.compile(
    r"\bfrom\s+[\"']?([^\"'\n,]+?)[\"']?\s+to\s+[\"']?([^\"'\n,.;]+)",
    re.IGNORECASE,
)
_SOURCE_RE = re.compile(r"\bsource\s*[:=]\s*[\"']?([^\"'\n,]+)", re.IGNORECASE)
_TARGET_RE = re.compile(r"\btarget\s*[:=]\s*[\"']?([^\"'\n,]+)", re.IGNORECASE)


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text) if p.strip()]


def classify_paragraph(paragraph: str) -> SegmentKind:
    if _COMPONENT_RE.search(paragraph):
        return SegmentKind.COMPONENT
    if _CONNECTION_RE.search(paragraph):
        return SegmentKind.CONNECTION_GROUP
    if _METADATA_RE.search(paragraph):
        return SegmentKind.METADATA
    if _ARROW_RE.search(paragraph) or _CONNECTION_WORDS_RE.search(paragraph):
        return SegmentKind.CONNECTION_GROUP
    if len(paragraph) < METADATA_MAX_CHARS and (":" in paragraph or "=" in paragraph):
        return SegmentKind.METADATA
    # ambiguous paragraphs are analyzed as components
    return SegmentKind.COMPONENT


def connection_endpoints(paragraph: str) -> Optional[Tuple[str, str]]:
    match = _FROM_TO_RE.search(paragraph)
    if match:
        return _endpoint_key(match.group(1)), _endpoint_key(match.group(2))
    source = _SOURCE_RE.search(paragraph)
    target = _TARGET_RE.search(paragraph)
    if source and target:
        return _endpoint_key(source.group(1)), _endpoint_key(target.group(1))
    return None


def _endpoint_key(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip().lower()


def group_connections(paragraphs: List[str]) -> List[str]:
    """Merge connection paragraphs that share a (source, target) pair."""
    groups: Dict[object, List[str]] = {}
    for index, paragraph in enumerate(paragraphs):
        endpoints = connection_endpoints(paragraph)
        key: object = endpoints if endpoints else ("ungrouped", index)
        groups.setdefault(key, []).append(paragraph)
    return ["\n\n".join(members) for members in groups.values()]


def structural_segments(text: str) -> List[Segment]:
    components: List[str] = []
    metadata: List[str] = []
    connections: List[str] = []
    for paragraph in split_paragraphs(text):
        kind = classify_paragraph(paragraph)
        if kind is SegmentKind.COMPONENT:
            components.append(paragraph)
        elif kind is SegmentKind.METADATA:
            metadata.append(paragraph)
        else:
            connections.append(paragraph)

    segments = (
        [Segment(SegmentKind.COMPONENT, p) for p in components]
        + [Segment(SegmentKind.METADATA, p) for p in metadata]
        + [Segment(SegmentKind.CONNECTION_GROUP, g) for g in group_connections(connections)]
    )
    return [s for s in segments if len(s.content.strip()) >= MIN_SEGMENT_CHARS]


def simple_chunks(text: str, chunk_size: int) -> List[str]:
    return [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]


def sliding_window_chunks(text: str, chunk_size: int = 4000, chunk_overlap: int = 500) -> List[str]:
    try:
        splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=SEPARATORS,
        )
        return splitter.split_text(text)
    except Exception as exc:
        logger.warning("Error chunking text with splitter, using fixed-size chunks: %s", exc)
        return simple_chunks(text, chunk_size)


def segment(
    text: str,
    chunk_size: int = 4000,
    chunk_overlap: int = 500,
    event_logger: EventLogger | None = None,
) -> List[Segment]:
    """Split ``text`` into typed segments; always returns at least one."""
    try:
        segments = structural_segments(text)
        if segments:
            return segments
        reason = "no_structural_segments"
    except Exception as exc:
        logger.warning("Error in component-based chunking: %s", exc)
        reason = f"error: {exc}"

    if event_logger:
        event_logger.log("segmentation.fallback", reason=reason, text_chars=len(text or ""))
    try:
        chunks = [c for c in sliding_window_chunks(text, chunk_size, chunk_overlap) if c.strip()]
    except Exception as exc:
        logger.warning("Sliding-window fallback failed: %s", exc)
        chunks = []
    if not chunks:
        return [Segment(SegmentKind.COMPONENT, text or "")]
    return [Segment(SegmentKind.COMPONENT, chunk) for chunk in chunks]
