"""
Single-shot, tool-free model calls built on run_loop.
"""

from typing import Any, Dict, List, Optional

from taor.exceptions import CompactionError
from taor.providers.base import BaseProvider
from taor.tools.registry import ToolRegistry
from .cancellation import CancellationToken
from .context.message import Message
from .loop import Callback, run_loop
from .structs import LoopResult


async def query(
    user_prompt: str,
    provider: BaseProvider,
    messages: Optional[List[Message]] = None,
    system_prompt: str = "",
    on_message: Optional[Callback] = None,
    thinking: Optional[str] = None,
    response_format: Optional[Dict[str, Any]] = None,
    cancellation: Optional[CancellationToken] = None,
) -> LoopResult:
    """
    Ask the model one question after `messages`, with no tools and no
    auto-compaction.
    """
    history = list(messages or [])
    history.append(
        Message(
            role="user",
            content=user_prompt,
            parent_id=history[-1].id if history else None,
        )
    )
    return await run_loop(
        history,
        provider,
        ToolRegistry(),
        system_prompt=system_prompt,
        on_message=on_message,
        auto_compact=False,
        thinking=thinking,
        response_format=response_format,
        cancellation=cancellation,
    )


async def summarize_history(
    messages: List[Message], provider: BaseProvider, system_prompt: str, user_prompt: str
) -> str:
    """The default compaction summarizer: a nested query over the history."""
    result = await query(
        user_prompt, provider, messages=messages, system_prompt=system_prompt
    )
    if not result.success:
        raise CompactionError(f"Failed to compact: {result.error.message}")
    summary = result.data.get("text") or ""
    if not summary.strip():
        raise CompactionError("Failed to compact: received empty summary from model")
    return summary
