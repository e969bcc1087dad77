import json
import logging

from refund_agents.core.logging import MAX_FIELD_CHARS, JsonFormatter


def _format(**extra) -> dict:
    record = logging.LogRecord("refund_agents.test", logging.WARNING, __file__, 1, "upload %s", ("ok",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(JsonFormatter().format(record))


def test_extra_fields_are_top_level():
    payload = _format(case_id="c1", stage="analysis")
    assert payload["message"] == "upload ok"
    assert payload["level"] == "WARNING"
    assert payload["case_id"] == "c1"
    assert payload["stage"] == "analysis"
    assert "args" not in payload


def test_evidence_payloads_are_redacted_and_long_text_truncated():
    payload = _format(data="aGVsbG8=" * 10, raw_text="x" * (MAX_FIELD_CHARS + 50))
    assert payload["data"] == "[redacted]"
    assert payload["raw_text"].endswith(f"[{MAX_FIELD_CHARS + 50} chars]")


def test_extra_cannot_override_core_keys():
    record = logging.LogRecord("n", logging.INFO, __file__, 1, "hello", None, None)
    record.level = "spoofed"
    assert json.loads(JsonFormatter().format(record))["level"] == "INFO"
