"""Tests for normalizing raw oracle responses."""

from studyagent.features.capabilities.catalog import build_default_registry
from studyagent.features.intent.router import decide
from studyagent.features.oracle.decode import (
    NoCall,
    StructuredCall,
    TextJSON,
    Unparseable,
    extract_total_tokens,
    normalize_response,
    strip_code_fences,
)
from studyagent.tests.mocks import function_call_response, text_response


def test_function_call_wins_over_text():
    data = {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"text": "thinking..."},
                        {"functionCall": {"name": "search_courses", "args": {"school": "MIT"}}},
                        {"functionCall": {"name": "generate_test", "args": {}}},
                    ]
                }
            }
        ]
    }
    assert normalize_response(data) == StructuredCall(name="search_courses", args={"school": "MIT"})


def test_fenced_json_course_search():
    text = '```json\n{"intent":"course_search","school":"MIT","department":"CS","confidence":0.8}\n```'
    outcome = normalize_response(text_response(text))
    assert isinstance(outcome, TextJSON)

    decision = decide(outcome, build_default_registry())
    assert decision.capability_id == "course_search"
    assert decision.extracted_parameters == {"school": "MIT", "department": "CS"}
    assert decision.confidence == 0.8


def test_absent_fields_are_not_defaulted():
    outcome = normalize_response(text_response('{"intent": "course_search", "reasoning": "courses for AI"}'))
    decision = decide(outcome, build_default_registry())
    assert decision.extracted_parameters == {}
    assert decision.confidence == 0.5


def test_strip_code_fences_variants():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_empty_output_is_no_call():
    assert isinstance(normalize_response(text_response("")), NoCall)
    assert isinstance(normalize_response({"candidates": [{"content": {"parts": []}}]}), NoCall)


def test_malformed_text_is_unparseable_and_deterministic():
    registry = build_default_registry()
    data = text_response("sure! the intent is test")
    first = decide(normalize_response(data), registry)
    second = decide(normalize_response(data), registry)
    assert first == second
    assert first.capability_id == "none"
    assert first.confidence == 0
    assert first.reasoning == "decode failed"


def test_json_without_intent_is_unparseable():
    assert isinstance(normalize_response(text_response('{"confidence": 0.9}')), Unparseable)
    assert isinstance(normalize_response(text_response("[1, 2]")), Unparseable)


def test_missing_candidates_is_unparseable():
    assert isinstance(normalize_response({}), Unparseable)
    assert isinstance(normalize_response({"candidates": []}), Unparseable)
    assert isinstance(normalize_response("not a dict"), Unparseable)


def test_unknown_function_maps_to_none():
    decision = decide(normalize_response(function_call_response("foo")), build_default_registry())
    assert decision.capability_id == "none"
    assert decision.confidence == 0
    assert decision.reasoning == "Unknown function called: foo"


def test_unknown_text_intent_maps_to_none():
    decision = decide(normalize_response(text_response('{"intent": "essay", "confidence": 0.9}')), build_default_registry())
    assert decision.capability_id == "none"
    assert decision.confidence == 0


def test_confidence_is_clamped():
    registry = build_default_registry()
    high = decide(normalize_response(text_response('{"intent": "course_search", "confidence": 7}')), registry)
    low = decide(normalize_response(text_response('{"intent": "course_search", "confidence": -1}')), registry)
    assert high.confidence == 1.0
    assert low.confidence == 0.0


def test_explicit_none_confidence_never_below_no_call():
    registry = build_default_registry()
    low = decide(normalize_response(text_response('{"intent": "none", "confidence": 0.05}')), registry)
    high = decide(normalize_response(text_response('{"intent": "none", "confidence": 0.7}')), registry)
    assert low.capability_id == "none"
    assert low.confidence >= decide(NoCall(), registry).confidence
    assert low.confidence == 0.2
    assert high.confidence == 0.7


def test_no_call_confidence():
    decision = decide(NoCall(), build_default_registry())
    assert decision.capability_id == "none"
    assert decision.confidence == 0.2


def test_extract_total_tokens():
    assert extract_total_tokens(function_call_response("generate_test", total_tokens=321)) == 321
    assert extract_total_tokens({}) == 0
    assert extract_total_tokens({"usageMetadata": {"totalTokenCount": "12"}}) == 0
    assert extract_total_tokens(None) == 0
