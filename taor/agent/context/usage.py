"""Token usage accounting for assistant turns and whole runs."""

import math
from dataclasses import dataclass
from typing import Any, Optional


def _lookup(source: Any, *keys: str) -> Any:
    for key in keys:
        if isinstance(source, dict):
            value = source.get(key)
        else:
            value = getattr(source, key, None)
        if value is not None:
            return value
    return None


def _count(value: Any) -> Optional[int]:
    """Normalize a reported count; nested {"total": n} shapes are unwrapped."""
    if value is None:
        return None
    if isinstance(value, dict) or hasattr(value, "total"):
        value = _lookup(value, "total")
        if value is None:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    return int(number)


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cache_read_tokens: int = 0

    @classmethod
    def empty(cls) -> "Usage":
        return cls()

    @classmethod
    def from_event_usage(cls, event_usage: Any) -> "Usage":
        """
        Build from a provider finish event.

        Accepts flat counts (`input_tokens`/`output_tokens`), the
        `prompt_tokens`/`completion_tokens` aliases, camelCase variants, and
        nested objects carrying a `total` (plus `cacheRead` on the input side).
        """
        if event_usage is None:
            return cls()

        raw_input = _lookup(event_usage, "inputTokens", "input_tokens")
        raw_output = _lookup(event_usage, "outputTokens", "output_tokens")

        prompt = _count(_lookup(event_usage, "promptTokens", "prompt_tokens"))
        if prompt is None:
            prompt = _count(raw_input) or 0
        completion = _count(_lookup(event_usage, "completionTokens", "completion_tokens"))
        if completion is None:
            completion = _count(raw_output) or 0
        total = _count(_lookup(event_usage, "totalTokens", "total_tokens"))
        if total is None:
            total = prompt + completion

        cache_read = _count(
            _lookup(event_usage, "cacheReadTokens", "cache_read_tokens", "cachedInputTokens")
        )
        if cache_read is None and raw_input is not None and not isinstance(raw_input, (int, float)):
            cache_read = _count(_lookup(raw_input, "cacheRead", "cache_read"))

        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total,
            cache_read_tokens=cache_read or 0,
        )

    @classmethod
    def from_assistant_message(cls, message) -> "Usage":
        usage = message.usage or {}
        prompt = _count(usage.get("input_tokens")) or 0
        completion = _count(usage.get("output_tokens")) or 0
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
            cache_read_tokens=_count(usage.get("cache_read_input_tokens")) or 0,
        )

    def add(self, other: "Usage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens
        self.cache_read_tokens += other.cache_read_tokens

    def reset(self) -> None:
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_tokens = 0
        self.cache_read_tokens = 0

    def clone(self) -> "Usage":
        return Usage(
            self.prompt_tokens,
            self.completion_tokens,
            self.total_tokens,
            self.cache_read_tokens,
        )

    def is_valid(self) -> bool:
        return (
            self.prompt_tokens >= 0
            and self.completion_tokens >= 0
            and self.total_tokens >= 0
            and self.cache_read_tokens >= 0
        )

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cache_read_tokens": self.cache_read_tokens,
        }
