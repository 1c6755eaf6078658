"""Token-usage extraction across provider response shapes."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from taskpilot.llm.types import TokenUsage

# (prompt, completion, total) key triples, checked in order
_KEY_SHAPES = (
    ("prompt_tokens", "completion_tokens", "total_tokens"),
    ("input_tokens", "output_tokens", "total_tokens"),
    ("promptTokens", "completionTokens", "totalTokens"),
    ("inputTokens", "outputTokens", "totalTokens"),
)

_NESTED_KEYS = ("usage", "token_usage", "tokenUsage", "usage_metadata", "response_metadata")


def _as_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    """Accept dicts as well as SDK objects (pydantic models, namespaces)."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value
    if hasattr(value, "model_dump"):
        dumped = value.model_dump()
        return dumped if isinstance(dumped, Mapping) else None
    if hasattr(value, "__dict__"):
        return vars(value)
    return None


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _from_flat(data: Mapping[str, Any]) -> Optional[TokenUsage]:
    for prompt_key, completion_key, total_key in _KEY_SHAPES:
        prompt = _to_int(data.get(prompt_key))
        completion = _to_int(data.get(completion_key))
        if prompt is None and completion is None:
            continue
        prompt = prompt or 0
        completion = completion or 0
        total = _to_int(data.get(total_key))
        return TokenUsage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total if total is not None else prompt + completion,
        )
    return None


def extract_token_usage(raw: Any, _depth: int = 0) -> Optional[TokenUsage]:
    """Pull token counts out of a provider response or usage block.

    Handles snake_case (``prompt_tokens``/``input_tokens``), camelCase
    (``promptTokens``) and nested ``token_usage``/``usage`` objects.

    Returns:
        TokenUsage, or None when no recognizable counts are present.
    """
    if _depth > 3:
        return None
    try:
        data = _as_mapping(raw)
    except (TypeError, ValueError):
        return None
    if not data:
        return None

    usage = _from_flat(data)
    if usage is not None:
        return usage

    for key in _NESTED_KEYS:
        nested = data.get(key)
        if nested is not None and nested is not raw:
            usage = extract_token_usage(nested, _depth + 1)
            if usage is not None:
                return usage
    return None
