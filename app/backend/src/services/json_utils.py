"""Tolerant JSON extraction for free-text model responses."""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

LOGGER = structlog.get_logger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\n?", flags=re.IGNORECASE)
_ARRAY_PATTERN = re.compile(r"\[.*\]", flags=re.DOTALL)


def strip_code_fences(raw: str) -> str:
    return _FENCE_PATTERN.sub("", raw).strip()


def extract_json_array(raw: str | None) -> list[Any]:
    """
    Extract a JSON array from an LLM response string.

    - Strips markdown code fences.
    - Narrows to the first ``[`` through the last ``]`` when wrapped in prose.
    - Wraps a lone JSON object in a list.
    - Raises ValueError when nothing parseable is found.
    """
    if raw is None or not raw.strip():
        raise ValueError("LLM returned empty content")

    text = strip_code_fences(raw)
    match = _ARRAY_PATTERN.search(text)
    if match:
        text = match.group(0)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        LOGGER.warning("llm_json_parse_failed", error=str(exc), raw_preview=text[:200])
        raise ValueError("LLM did not return valid JSON") from exc

    if not isinstance(parsed, list):
        LOGGER.warning("llm_json_not_array", kind=type(parsed).__name__)
        parsed = [parsed]
    return parsed


def extract_json_object(raw: str | None) -> dict[str, Any]:
    """Parse the first ``{...}`` block of ``raw``."""

    if raw is None:
        raise ValueError("LLM returned empty content")

    text = raw.strip()
    match = re.search(r"\{.*\}", text, flags=re.DOTALL)
    if not match:
        LOGGER.warning("llm_missing_json_object", raw_preview=text[:500])
        raise ValueError("LLM did not return a JSON object")

    return json.loads(match.group(0))


__all__ = ["extract_json_array", "extract_json_object", "strip_code_fences"]
