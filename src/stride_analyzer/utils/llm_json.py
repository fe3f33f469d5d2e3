"""Recovery of near-JSON model output.

Models asked for "pure JSON" still return fenced blocks, trailing commas,
bare keys, single quotes, comments and truncated objects. ``repair_json_text``
applies increasingly aggressive rewrites and stops at the first one that
parses; ``recover_report`` turns the outcome into an ``AnalysisReport`` or a
``DegradedResult`` and never raises.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from stride_analyzer.models.threat_report import (
    AnalysisReport,
    DegradedResult,
    RecoveryResult,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

REPORT_KEYS = (
    "summary",
    "components",
    "dataFlows",
    "keywords",
    "strideCategories",
    "recommendations",
)

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*?\}|\[.*?\])\s*```", re.DOTALL)
_FENCE_MARKERS_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?|\n?```")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([a-zA-Z0-9_]+)(\s*:)")
_WHITESPACE_RE = re.compile(r"\s+")
_DANGLING_VALUE_RE = re.compile(r':\s*"([^"]*?)\s*([,}])')
_DANGLING_END_RE = re.compile(r':\s*"([^"]*)$')
_UNCLOSED_VALUE_RE = re.compile(r'("\s*:\s*"[^"]*[^"])(\s*[,}])')
_UNCLOSED_VALUE_AT_END_RE = re.compile(r'"\s*:\s*"[^"]*[^"]$')
_INTERIOR_QUOTES_RE = re.compile(r'"([^"]*)"([^"]*)"([^"]*)"')


def _try_load(text: str) -> Any:
    try:
        return json.loads(text)
    except RecursionError:
        raise json.JSONDecodeError("nesting too deep", text, 0) from None


def strip_code_fences(text: str) -> str:
    return _FENCE_MARKERS_RE.sub("", text).strip()


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def quote_bare_keys(text: str) -> str:
    return _BARE_KEY_RE.sub(r'\1"\2"\3', text)


def strip_comments(text: str) -> str:
    """Drop // and /* */ comments that sit outside string literals."""
    out: List[str] = []
    i = 0
    in_string = False
    quote = ""
    length = len(text)
    while i < length:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < length:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                in_string = False
            i += 1
            continue
        if ch in ('"', "'"):
            in_string = True
            quote = ch
            out.append(ch)
            i += 1
            continue
        if text.startswith("//", i):
            end = text.find("\n", i)
            i = length if end == -1 else end
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = length if end == -1 else end + 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.replace("\n", " ")).strip()


def close_dangling_quotes(text: str) -> str:
    text = _DANGLING_VALUE_RE.sub(r':"\1"\2', text)
    return _DANGLING_END_RE.sub(r':"\1"', text)


def close_unclosed_values(text: str) -> str:
    if _UNCLOSED_VALUE_AT_END_RE.search(text):
        text = text + '"'
    return _UNCLOSED_VALUE_RE.sub(r'\1"\2', text)


def escape_interior_quotes(text: str) -> str:
    return _INTERIOR_QUOTES_RE.sub(lambda m: '"' + m.group(1) + '\\"' + m.group(2) + '\\"' + m.group(3) + '"', text)


def balance_brackets(text: str) -> str:
    """Append the closing tokens missing at the end of a truncated document."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()
    suffix = '"' if in_string else ""
    suffix += "".join(reversed(stack))
    if not suffix:
        return text
    return remove_trailing_commas(text.rstrip().rstrip(",") + suffix)


def _candidate_json_strings(text: str) -> Iterable[str]:
    yield text
    match = _FENCE_RE.search(text)
    if match:
        yield match.group(1).strip()
    obj_start = text.find("{")
    arr_start = text.find("[")
    if obj_start == -1 and arr_start == -1:
        return
    if arr_start != -1 and (obj_start == -1 or arr_start < obj_start):
        end = text.rfind("]")
        if end != -1:
            yield text[arr_start : end + 1]
    else:
        end = text.rfind("}")
        if end != -1:
            yield text[obj_start : end + 1]


def _outermost_object(text: str) -> str:
    start = text.find("{")
    return text[start:] if start > 0 else text


_CLEANUP_STEPS: List[Callable[[str], str]] = [
    strip_code_fences,
    strip_comments,
    remove_trailing_commas,
    quote_bare_keys,
    lambda text: text.replace("'", '"'),
    collapse_whitespace,
    close_dangling_quotes,
]

_AGGRESSIVE_STEPS: List[Callable[[str], str]] = [
    balance_brackets,
    close_unclosed_values,
    escape_interior_quotes,
    balance_brackets,
]


def repair_json_text(raw: str) -> Any:
    """Parse ``raw`` as JSON, escalating through cleanup rewrites.

    Raises ``ValueError`` carrying the last decode error when nothing parses.
    """
    if not isinstance(raw, str):
        raise ValueError(f"expected text, got {type(raw).__name__}")
    try:
        return _try_load(raw)
    except json.JSONDecodeError:
        logger.debug("Initial JSON parse failed, attempting cleanup")

    for candidate in list(_candidate_json_strings(raw.strip()))[1:]:
        try:
            return _try_load(candidate)
        except json.JSONDecodeError:
            continue

    last_error: Optional[Exception] = None
    cleaned = raw
    for step in _CLEANUP_STEPS:
        cleaned = step(cleaned)
        try:
            return _try_load(cleaned)
        except json.JSONDecodeError as exc:
            last_error = exc

    logger.debug("Basic cleanup failed, attempting more aggressive fixes")
    cleaned = _outermost_object(cleaned)
    for step in _AGGRESSIVE_STEPS:
        cleaned = step(cleaned)
        try:
            return _try_load(cleaned)
        except json.JSONDecodeError as exc:
            last_error = exc

    raise ValueError(str(last_error) if last_error else "unparseable output")


def parse_llm_json(response: Any) -> Any:
    if isinstance(response, (dict, list)):
        return response
    if response is None:
        return {"_error": "empty_response", "_raw_text": ""}
    if not isinstance(response, str):
        return {"_error": "unsupported_type", "_raw_text": str(response)}

    text = response.strip()
    if not text:
        return {"_error": "empty_response", "_raw_text": ""}
    try:
        return repair_json_text(text)
    except ValueError:
        return {"_error": "invalid_json", "_raw_text": text}


def recover_report(raw_text: Any) -> RecoveryResult:
    """Turn model output into a report; degraded results replace exceptions."""
    if isinstance(raw_text, (dict, list)):
        data = raw_text
        raw = json.dumps(raw_text, ensure_ascii=False)
    else:
        raw = "" if raw_text is None else str(raw_text)
        if not raw.strip():
            return DegradedResult(error="JSON parsing failed", error_message="empty response", raw_text=raw)
        try:
            data = repair_json_text(raw)
        except ValueError as exc:
            logger.warning(
                "Failed to parse JSON after multiple cleanup attempts: %s; sample: %s...",
                exc,
                raw[:500],
            )
            return DegradedResult(error="JSON parsing failed", error_message=str(exc), raw_text=raw)

    return coerce_report(data, raw)


def coerce_report(data: Any, raw: str = "") -> RecoveryResult:
    if not isinstance(data, dict):
        return DegradedResult(
            error="JSON parsing failed",
            error_message=f"expected a JSON object, got {type(data).__name__}",
            raw_text=raw,
        )
    if data.get("error") and "strideCategories" not in data:
        # A degraded record from an earlier stage round-tripped through the model.
        return DegradedResult(
            error=str(data.get("error")),
            error_message=str(data.get("errorMessage") or data.get("error")),
            raw_text=raw,
            timestamp=str(data.get("timestamp") or "") or utc_now_iso(),
        )
    if not any(key in data for key in REPORT_KEYS):
        return DegradedResult(
            error="JSON parsing failed",
            error_message="object has none of the report fields",
            raw_text=raw,
        )
    try:
        return AnalysisReport.model_validate(data)
    except ValidationError as exc:
        return DegradedResult(error="JSON parsing failed", error_message=str(exc), raw_text=raw)


def describe_llm_failure(response: Any, required_keys: Iterable[str] = REPORT_KEYS) -> Dict[str, Any]:
    parsed = parse_llm_json(response)
    if isinstance(parsed, dict) and parsed.get("_error"):
        raw = parsed.get("_raw_text", "")
        return {"error_type": parsed["_error"], "raw_len": len(raw), "raw_sample": raw[:800]}
    if not isinstance(parsed, dict):
        return {"error_type": "invalid_shape"}
    missing = [key for key in required_keys if key not in parsed]
    return {"error_type": "missing_keys", "missing_keys": missing} if missing else {}
