#!/usr/bin/env python3
"""
Context Compression
===================
Overflow detection and pruning of stale tool outputs.

Compaction (summarizing the whole history) lives in compaction.py; the
History decides when to run which stage.
"""

import json
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Tuple

from taor.tools.base import ToolResult
from taor.utils.token_estimation import count_tokens
from .message import Message, ToolResultPart

logger = logging.getLogger(__name__)

COMPACTION_TRIGGER_RATIO = 0.7
COMPACTION_OUTPUT_TOKEN_MAX = 4096
PRUNE_PROTECT_THRESHOLD = 40_000
PRUNE_MINIMUM = 20_000
PRUNE_PROTECT_TURNS = 2
PRUNE_PROTECTED_TOOLS = ("skill", "task")
# 80% of a 32k window; below this compression is never considered.
MIN_TOKEN_THRESHOLD = int(32_000 * 0.8)


@dataclass(frozen=True)
class CompressionConfig:
    """Immutable for the lifetime of one loop run."""

    # Compaction
    auto: bool = True
    output_token_max: int = COMPACTION_OUTPUT_TOKEN_MAX
    auto_continue: bool = True
    trigger_ratio: float = COMPACTION_TRIGGER_RATIO

    # Pruning
    enabled: bool = True
    protect_threshold: int = PRUNE_PROTECT_THRESHOLD
    minimum_prune: int = PRUNE_MINIMUM
    protected_tools: Tuple[str, ...] = field(default=PRUNE_PROTECTED_TOOLS)
    protect_turns: int = PRUNE_PROTECT_TURNS

    min_token_threshold: int = MIN_TOKEN_THRESHOLD

    def with_overrides(self, **overrides) -> "CompressionConfig":
        if "protected_tools" in overrides:
            overrides["protected_tools"] = tuple(overrides["protected_tools"])
        return replace(self, **overrides)


@dataclass
class PruneResult:
    pruned: bool = False
    pruned_count: int = 0
    pruned_tokens: int = 0


def is_overflow(
    input_tokens: int,
    context_window: int,
    config: CompressionConfig,
    cache_read_tokens: int = 0,
) -> bool:
    """
    True when the prompt occupies more than `trigger_ratio` of the window.

    A zero context window means the model limit is unknown; compression is
    then disabled rather than guessed.
    """
    if not config.auto:
        return False
    if context_window == 0:
        return False

    used_tokens = input_tokens + (cache_read_tokens or 0)
    threshold = context_window * config.trigger_ratio
    overflow = used_tokens > threshold

    logger.debug(
        "is_overflow: used=%d context=%d ratio=%s threshold=%s overflow=%s",
        used_tokens,
        context_window,
        config.trigger_ratio,
        threshold,
        overflow,
    )
    return overflow


def _result_text(result: ToolResult) -> str:
    content = result.llm_content if result is not None else ""
    if isinstance(content, str):
        return content
    return json.dumps(content or "")


def pruned_placeholder(pruned_at: float) -> str:
    stamp = datetime.fromtimestamp(pruned_at, tz=timezone.utc).isoformat()
    return f"[Output pruned at {stamp}]"


def prune(messages: List[Message], config: CompressionConfig) -> PruneResult:
    """
    Replace old tool outputs with a placeholder.

    Rules:
    1. Walk messages newest to oldest; each user message starts a new turn.
    2. Tool messages inside the most recent `protect_turns` turns are kept.
    3. Token estimates of older outputs accumulate; once the running total
       passes `protect_threshold`, every further output is marked.
    4. Outputs of protected tools are never marked.
    5. An already pruned output ends the scan of that message.
    6. Nothing is changed unless the marked total exceeds `minimum_prune`.
    """
    if not config.enabled:
        return PruneResult()

    total_tokens = 0
    pruned_tokens = 0
    to_prune: List[ToolResultPart] = []
    turns = 0

    for msg in reversed(messages):
        if msg.role == "user":
            turns += 1

        if msg.role != "tool" or isinstance(msg.content, str):
            continue
        if turns < config.protect_turns:
            continue

        for part in msg.content:
            if not isinstance(part, ToolResultPart):
                continue
            if part.tool_name in config.protected_tools:
                continue
            if part.pruned:
                break

            estimate = count_tokens(_result_text(part.result))
            total_tokens += estimate
            if total_tokens > config.protect_threshold:
                pruned_tokens += estimate
                to_prune.append(part)

    if pruned_tokens <= config.minimum_prune:
        return PruneResult()

    for part in to_prune:
        part.pruned = True
        part.pruned_at = time.time()
        if part.result is not None:
            part.result = ToolResult(
                part.result.status,
                pruned_placeholder(part.pruned_at),
                part.result.return_display,
                part.result.metadata,
            )

    logger.debug("Pruned %d tool outputs, ~%d tokens", len(to_prune), pruned_tokens)
    return PruneResult(pruned=True, pruned_count=len(to_prune), pruned_tokens=pruned_tokens)
