"""Recover a JSON object from free-text model output."""
import json
import logging
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

JSON_FENCE_RE = re.compile(r"```json\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class MalformedModelOutput(ValueError):
    """Raised when no JSON object can be recovered from model text."""

    def __init__(self, raw_text: str) -> None:
        super().__init__("Model output does not contain a JSON object")
        self.raw_text = raw_text


def parse_model_json(text: str) -> Dict[str, Any]:
    """Parse a JSON object from ``text``.

    Tries, in order, the whole text, the first ```json fenced block, and the
    span from the first ``{`` to the last ``}``. Field validation is left to
    the caller.
    """
    stripped = (text or "").strip()

    parsed = _loads_object(stripped)
    if parsed is not None:
        return parsed

    match = JSON_FENCE_RE.search(stripped)
    if match:
        parsed = _loads_object(match.group(1).strip())
        if parsed is not None:
            return parsed

    first_open = stripped.find("{")
    last_close = stripped.rfind("}")
    if first_open != -1 and last_close > first_open:
        parsed = _loads_object(stripped[first_open: last_close + 1])
        if parsed is not None:
            return parsed

    logger.warning("Unparseable model output", extra={"preview": stripped[:200]})
    raise MalformedModelOutput(text)


def _loads_object(candidate: str) -> Optional[Dict[str, Any]]:
    if not candidate:
        return None
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None
