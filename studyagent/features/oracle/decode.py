"""
studyagent/features/oracle/decode.py

Normalizes raw Gemini generateContent responses.

This is the only place that inspects the oracle's response shape. Everything
downstream works with one of four outcomes:

- StructuredCall: the model invoked a declared function
- TextJSON: the model answered with a JSON object carrying an "intent"
- NoCall: the model answered with nothing usable
- Unparseable: the response or its text could not be interpreted

Decoding is pure: the same input always yields the same outcome.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from studyagent.core.errors import DecodeError

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class StructuredCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TextJSON:
    payload: Dict[str, Any]


@dataclass(frozen=True)
class NoCall:
    text: str = ""


@dataclass(frozen=True)
class Unparseable:
    raw: str
    reason: str


OracleOutcome = Union[StructuredCall, TextJSON, NoCall, Unparseable]


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json / ``` Markdown fence, if any."""
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def _parts(data: Any) -> List[Dict[str, Any]]:
    if not isinstance(data, dict):
        raise DecodeError("Response is not a JSON object")
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise DecodeError("Response has no candidates")
    first = candidates[0]
    if not isinstance(first, dict):
        raise DecodeError("Candidate is not an object")
    content = first.get("content") or {}
    if not isinstance(content, dict):
        raise DecodeError("Candidate content is not an object")
    parts = content.get("parts") or []
    if not isinstance(parts, list):
        raise DecodeError("Candidate parts is not a list")
    return [part for part in parts if isinstance(part, dict)]


def _parse_text_json(text: str) -> Dict[str, Any]:
    try:
        payload = json.loads(strip_code_fences(text))
    except (ValueError, TypeError) as exc:
        raise DecodeError(f"Invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise DecodeError("JSON payload is not an object")
    if not isinstance(payload.get("intent"), str):
        raise DecodeError("JSON payload has no string 'intent'")
    return payload


def normalize_response(data: Any) -> OracleOutcome:
    """Decode a raw generateContent response into an OracleOutcome."""
    try:
        parts = _parts(data)
    except DecodeError as exc:
        return Unparseable(raw=_safe_dump(data), reason=exc.message)

    for part in parts:
        call = part.get("functionCall")
        if isinstance(call, dict) and isinstance(call.get("name"), str) and call["name"]:
            args = call.get("args")
            return StructuredCall(name=call["name"], args=dict(args) if isinstance(args, dict) else {})

    text = "".join(part["text"] for part in parts if isinstance(part.get("text"), str))
    if not text.strip():
        return NoCall()

    try:
        return TextJSON(payload=_parse_text_json(text))
    except DecodeError as exc:
        return Unparseable(raw=text, reason=exc.message)


def extract_total_tokens(data: Any) -> int:
    """usageMetadata.totalTokenCount, or 0 when absent or invalid."""
    if not isinstance(data, dict):
        return 0
    usage = data.get("usageMetadata")
    if not isinstance(usage, dict):
        return 0
    total = usage.get("totalTokenCount")
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        return 0
    return max(0, int(total))


def _safe_dump(data: Any) -> str:
    try:
        return json.dumps(data)[:500]
    except (TypeError, ValueError):
        return repr(data)[:500]
