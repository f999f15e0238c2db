"""
Extraction of the textual answer and credits from flow API responses.

The API returns ``result`` either as a JSON-encoded string or as an already
decoded object; ``decode_result`` turns both into the same mapping so the
rest of the module only deals with one shape.
"""
from __future__ import annotations

import json
import re
from typing import Any

from src.flowbatch.domain.models.flow_response import FlowTaskResponse
from src.flowbatch.domain.models.task_state import RemoteStatus

CREDIT_MICRO_UNITS = 1_000_000

_FENCE_OPEN = re.compile(r"^```[\w+-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```$")


def decode_result(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            return None
        if isinstance(decoded, dict):
            return decoded
    return None


def strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
    cleaned = _FENCE_CLOSE.sub("", cleaned, count=1)
    return cleaned.strip()


def _output_fragments(payload: dict[str, Any]) -> list[str]:
    outputs = payload.get("outputs")
    if not isinstance(outputs, list) or not outputs or not isinstance(outputs[0], dict):
        return []
    inner = outputs[0].get("outputs")
    if not isinstance(inner, list):
        return []
    fragments = []
    for item in inner:
        if not isinstance(item, dict):
            continue
        results = item.get("results")
        message = results.get("message") if isinstance(results, dict) else None
        text = message.get("result") if isinstance(message, dict) else None
        if not isinstance(text, str):
            continue
        fragment = strip_code_fence(text)
        if fragment:
            fragments.append(fragment)
    return fragments


def extract_answer(status: str | None, raw: Any) -> str | None:
    """Return the answer text carried by a response body, or None."""
    answer: str | None = None
    payload = decode_result(raw)
    if payload is not None:
        if "ai_answer" in payload:
            value = payload["ai_answer"]
            answer = value if isinstance(value, str) or value is None else str(value)
        elif status == RemoteStatus.SUCCESS.value:
            joined = "\n".join(_output_fragments(payload)).strip()
            answer = joined or None
    if not answer and isinstance(raw, str):
        return raw
    return answer


def extract_credits(raw: Any) -> float | None:
    payload = decode_result(raw)
    if payload is None:
        return None
    value = payload.get("credits")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value / CREDIT_MICRO_UNITS


def response_answer(response: FlowTaskResponse) -> str | None:
    return extract_answer(response.status, response.result)


def response_credits(response: FlowTaskResponse) -> float | None:
    credits = extract_credits(response.result)
    if credits is None and response.credits is not None:
        credits = response.credits / CREDIT_MICRO_UNITS
    return credits


def serialize_response(response: FlowTaskResponse) -> str:
    return response.model_dump_json()
