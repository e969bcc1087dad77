import json

import pytest

from refund_agents.services.sanitizer import MalformedModelOutput, parse_model_json

RECORD = {
    "merchantName": "Acme Air",
    "amount": "250",
    "currency": "USD",
    "nested": {"items": [1, 2, {"ok": True}], "note": "braces } inside { strings"},
}


def test_plain_json_round_trips():
    assert parse_model_json(json.dumps(RECORD)) == RECORD


def test_fenced_json_block():
    text = f"Here is the data:\n```json\n{json.dumps(RECORD, indent=2)}\n```\nLet me know!"
    assert parse_model_json(text) == RECORD


def test_prose_wrapped_object():
    assert parse_model_json('Sure, here you go: {"a":1} thanks!') == {"a": 1}


def test_no_object_raises_with_original_text():
    with pytest.raises(MalformedModelOutput) as excinfo:
        parse_model_json("no data available")
    assert excinfo.value.raw_text == "no data available"


def test_broken_fence_falls_back_to_brace_span():
    text = '```json\n{"a": 1,,}\n```\n{"b": 2}'
    # The fence fails to parse; the outermost brace span is also invalid.
    with pytest.raises(MalformedModelOutput):
        parse_model_json(text)


def test_non_object_json_is_rejected():
    with pytest.raises(MalformedModelOutput):
        parse_model_json("[1, 2, 3]")


def test_empty_text_is_rejected():
    with pytest.raises(MalformedModelOutput):
        parse_model_json("")
