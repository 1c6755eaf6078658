"""Token estimation and per-session usage tracking.

Uses tiktoken for accurate counting, falling back to a character-based
heuristic when no encoding can be loaded (e.g. offline without a cached
BPE file).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import tiktoken

from taskpilot.llm.types import TokenUsage
from taskpilot.utils.log import debug

# Model families that ship with the newer o200k tokenizer
_O200K_PREFIXES = ("gpt-4o", "gpt-4.1", "gpt-5", "o1", "o3", "o4")

_encodings: Dict[str, Optional["tiktoken.Encoding"]] = {}
_encodings_lock = threading.Lock()


def encoding_name_for_model(model: Optional[str]) -> str:
    """Return the tiktoken encoding name used for *model*."""
    name = (model or "").lower().rsplit("/", 1)[-1]
    if name.startswith(_O200K_PREFIXES):
        return "o200k_base"
    return "cl100k_base"


def _get_encoding(name: str) -> Optional["tiktoken.Encoding"]:
    with _encodings_lock:
        if name in _encodings:
            return _encodings[name]
        try:
            enc: Optional[tiktoken.Encoding] = tiktoken.get_encoding(name)
        except (ValueError, OSError) as e:
            debug("tokens", f"tiktoken encoding {name} unavailable: {e}")
            enc = None
        _encodings[name] = enc
        return enc


def estimate_tokens(text: str, model: Optional[str] = None) -> int:
    """Estimate token count for text.

    Args:
        text: Text to estimate tokens for.
        model: Optional model name used to pick the tokenizer.

    Returns:
        Estimated token count.
    """
    if not text:
        return 0

    enc = _get_encoding(encoding_name_for_model(model))
    if enc is not None:
        return len(enc.encode(text, disallowed_special=()))

    # Fallback: ~4 characters per token for English text
    return (len(text) // 4) + 1


def estimate_message_tokens(messages: List[dict], model: Optional[str] = None) -> int:
    """Rough token count for a chat message list (content plus per-message overhead)."""
    total = 0
    for msg in messages:
        content = msg.get("content") or ""
        if not isinstance(content, str):
            content = str(content)
        total += estimate_tokens(content, model) + 4
    return total


@dataclass
class TokenUsageTracker:
    """Accumulates token usage across the model calls of one session."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    calls: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, usage: Optional[TokenUsage]) -> None:
        """Record one model call; ``None`` usage still counts the call."""
        with self._lock:
            self.calls += 1
            if usage is None:
                return
            self.prompt_tokens += usage.prompt_tokens
            self.completion_tokens += usage.completion_tokens

    def snapshot(self) -> TokenUsage:
        with self._lock:
            return TokenUsage(
                prompt_tokens=self.prompt_tokens,
                completion_tokens=self.completion_tokens,
                total_tokens=self.prompt_tokens + self.completion_tokens,
            )

    def reset(self) -> None:
        with self._lock:
            self.prompt_tokens = 0
            self.completion_tokens = 0
            self.calls = 0
