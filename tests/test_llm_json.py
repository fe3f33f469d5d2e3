import json
import logging

import pytest

from stride_analyzer.models.threat_report import (
    DEGRADED_SUMMARY,
    STRIDE_TITLES,
    AnalysisReport,
    DegradedResult,
    is_degraded,
    serialize_result,
)
from stride_analyzer.utils.llm_json import (
    balance_brackets,
    parse_llm_json,
    recover_report,
    repair_json_text,
    strip_comments,
)


def _report(**overrides):
    data = {
        "summary": "Gateway exposes internal services",
        "components": ["API Gateway", "Orders DB"],
        "dataFlows": ["Gateway -> Orders DB"],
        "keywords": ["gateway"],
        "strideCategories": [
            {
                "title": title,
                "description": f"{title} threats",
                "risks": [],
            }
            for title in STRIDE_TITLES
        ],
        "recommendations": [
            {"title": "Enable mTLS", "description": "Between gateway and DB", "priority": "High"}
        ],
    }
    data.update(overrides)
    return data


def test_valid_report_is_returned_unchanged() -> None:
    data = _report(timestamp="2024-01-01T00:00:00Z")
    result = recover_report(json.dumps(data))
    assert isinstance(result, AnalysisReport)
    assert result.to_dict() == data


def test_fenced_output_with_trailing_commas() -> None:
    clean = json.dumps(_report(), indent=2)
    fenced = "```json\n" + clean.replace("]", ",]").replace("}", ",}") + "\n```"
    assert recover_report(fenced).to_dict() == recover_report(clean).to_dict() == _report()


def test_bare_keys_and_single_quotes() -> None:
    result = recover_report("{summary: 'weak auth', components: ['Login']}")
    assert isinstance(result, AnalysisReport)
    assert result.summary == "weak auth"
    assert result.components == ["Login"]


def test_comments_outside_strings_are_removed() -> None:
    raw = '{"summary": "see http://docs", // reviewer note\n "components": [] /* none */}'
    result = recover_report(raw)
    assert isinstance(result, AnalysisReport)
    assert result.summary == "see http://docs"


def test_strip_comments_keeps_string_content() -> None:
    assert strip_comments('{"a": "x // y"} // tail') == '{"a": "x // y"} '


def test_truncated_output_is_closed() -> None:
    raw = '{"summary": "partial", "components": ["A", "B"'
    result = recover_report(raw)
    assert isinstance(result, AnalysisReport)
    assert result.summary == "partial"
    assert result.components == ["A", "B"]


def test_balance_brackets_closes_open_string_and_containers() -> None:
    assert json.loads(balance_brackets('{"a": [1, {"b": "tex')) == {"a": [1, {"b": "tex"}]}
    assert balance_brackets('{"a": 1}') == '{"a": 1}'


def test_prose_around_json_is_ignored() -> None:
    raw = 'Here is the analysis:\n{"summary": "fine"}\nLet me know if you need more.'
    result = recover_report(raw)
    assert isinstance(result, AnalysisReport)
    assert result.summary == "fine"


def test_garbage_yields_degraded_result() -> None:
    result = recover_report("I am sorry, I cannot help with that.")
    assert isinstance(result, DegradedResult)
    assert result.error == "JSON parsing failed"
    assert result.summary == DEGRADED_SUMMARY
    assert result.timestamp
    assert result.raw_text.startswith("I am sorry")


def test_empty_response_is_degraded() -> None:
    result = recover_report("   ")
    assert is_degraded(result)
    assert result.error_message == "empty response"


def test_non_object_json_is_degraded() -> None:
    assert is_degraded(recover_report("[1, 2, 3]"))
    assert is_degraded(recover_report('{"unrelated": true}'))


def test_round_tripped_degraded_record_stays_degraded() -> None:
    degraded = DegradedResult(error="JSON parsing failed", error_message="boom")
    result = recover_report(serialize_result(degraded))
    assert is_degraded(result)
    assert result.error_message == "boom"


def test_missing_categories_are_filled_in_order() -> None:
    result = recover_report('{"summary": "only summary"}')
    assert isinstance(result, AnalysisReport)
    assert [c.title for c in result.stride_categories] == list(STRIDE_TITLES)
    assert all(c.risks == [] for c in result.stride_categories)


def test_category_titles_and_levels_are_normalized() -> None:
    data = {
        "summary": "s",
        "strideCategories": [
            {"title": "DoS", "risks": [{"description": "flood", "severity": "critical"}]},
            {"title": "Spoofing Threats", "risks": [{"description": "fake id", "severity": "info"}]},
            {"title": "Denial of Service", "risks": [{"description": "slowloris"}]},
            {"title": "Unrelated"},
        ],
        "recommendations": [{"title": "r", "priority": "urgent"}],
    }
    result = recover_report(json.dumps(data))
    by_title = {c.title: c for c in result.stride_categories}
    assert len(result.stride_categories) == 6
    assert [r.description for r in by_title["Denial of Service"].risks] == ["flood", "slowloris"]
    assert by_title["Denial of Service"].risks[0].severity.value == "High"
    assert by_title["Spoofing"].risks[0].severity.value == "Low"
    assert by_title["Denial of Service"].risks[1].severity.value == "Medium"
    assert result.recommendations[0].priority.value == "Medium"


def test_categories_keyed_by_title() -> None:
    data = {"summary": "s", "strideCategories": {"Tampering": {"description": "edits", "risks": []}}}
    result = recover_report(json.dumps(data))
    tampering = result.stride_categories[1]
    assert tampering.title == "Tampering"
    assert tampering.description == "edits"


def test_component_objects_become_names() -> None:
    result = recover_report('{"components": [{"name": "Queue"}, "Worker", ""]}')
    assert result.components == ["Queue", "Worker"]


def test_repair_json_text_raises_when_unrecoverable() -> None:
    with pytest.raises(ValueError):
        repair_json_text("definitely not json")


def test_parse_llm_json_reports_errors_without_raising() -> None:
    assert parse_llm_json("") == {"_error": "empty_response", "_raw_text": ""}
    assert parse_llm_json("nope")["_error"] == "invalid_json"
    assert parse_llm_json('{"a": 1,}') == {"a": 1}


def test_unrecognized_category_title_falls_back_to_description() -> None:
    data = {
        "summary": "s",
        "strideCategories": [
            {
                "title": "Identity",
                "description": "Attackers spoof session tokens",
                "risks": [{"description": "stolen cookie"}],
            },
        ],
    }
    spoofing = recover_report(json.dumps(data)).stride_categories[0]
    assert spoofing.title == "Spoofing"
    assert [r.description for r in spoofing.risks] == ["stolen cookie"]


def test_unplaceable_category_risks_are_logged(caplog) -> None:
    data = {"summary": "s", "strideCategories": [{"title": "Misc", "risks": [{"description": "odd"}]}]}
    with caplog.at_level(logging.WARNING, logger="stride_analyzer.models.threat_report"):
        result = recover_report(json.dumps(data))
    assert all(c.risks == [] for c in result.stride_categories)
    assert "Dropping 1 risk(s) under unrecognized category 'Misc'" in caplog.text
