"""
History compaction: distill the whole conversation into one summary.

The summary is produced by a nested, tool-free model run supplied by the
caller as a `Summarizer`, so this module never depends on the loop itself.
"""

import json
import logging
from typing import Any, Awaitable, Callable, List, Optional

from taor.exceptions.context import CompactionError
from .message import (
    ImagePart,
    Message,
    ReasoningPart,
    TextPart,
    ToolResultPart,
    ToolUsePart,
)

logger = logging.getLogger(__name__)

# summarize(messages, provider, system_prompt, user_prompt) -> summary text
Summarizer = Callable[[List[Message], Any, str, str], Awaitable[str]]

COMPACT_MESSAGE = "Chat history compacted successfully."

COMPACT_USER_PROMPT = (
    "Provide a detailed but concise summary of our conversation above. Focus on "
    "information that would be helpful for continuing the conversation, including "
    "what we did, what we're doing, which files we're working on, and what we're "
    "going to do next."
)

COMPACT_SYSTEM_PROMPT = """
You are a helpful AI assistant tasked with summarizing conversations.

When the conversation history grows too large, you will be invoked to distill the entire history into a concise, structured XML snapshot. This snapshot is CRITICAL, as it will become the agent's *only* memory of the past. The agent will resume its work based solely on this snapshot. All crucial details, plans, errors, and user directives MUST be preserved.

First, you will think through the entire history. Review the user's overall goal, the agent's actions, tool outputs, file modifications, and any unresolved questions. Identify every piece of information that is essential for future actions.

After your reasoning is complete, generate the final <context_summary> XML object. Be incredibly dense with information. Omit any irrelevant conversational filler.

The structure MUST be as follows:

<context_summary>
  <conversation_overview>
    <!-- Single paragraph overview of the entire conversation. -->
  </conversation_overview>

  <key_knowledge>
    <!-- Crucial facts, conventions, and constraints the agent must remember, as bullet points.
         e.g. build and test commands, API endpoints, user preferences. -->
  </key_knowledge>

  <file_system_state>
    <!-- Files that have been created, read, modified, or deleted, with their status and what was learned.
         e.g. "MODIFIED: services/auth.py - switched token signing to the new key store." -->
  </file_system_state>

  <recent_actions>
    <!-- The last few significant agent actions and their outcomes. Facts only. -->
  </recent_actions>

  <current_plan>
    <!-- The agent's step-by-step plan, each step marked [DONE], [IN PROGRESS] or [TODO]. -->
  </current_plan>
</context_summary>

Remember: This summary will serve as the foundation for continuing the conversation and implementation. Ensure all critical information is preserved while maintaining clarity and conciseness.
""".strip()

_ENGLISH = {"en", "english", "en-us", "en-gb"}


def language_instruction(language: Optional[str]) -> Optional[str]:
    if not language or language.strip().lower() in _ENGLISH:
        return None
    return f"Always respond in {language.strip()}."


def build_compact_system_prompt(language: Optional[str] = None) -> str:
    instruction = language_instruction(language)
    if not instruction:
        return COMPACT_SYSTEM_PROMPT
    return f"{COMPACT_SYSTEM_PROMPT}\n\n{instruction}"


def _stringify(content: Any) -> str:
    if isinstance(content, str):
        return content
    texts = []
    for item in content or []:
        if isinstance(item, dict) and item.get("type") == "text":
            texts.append(item.get("text", ""))
        elif isinstance(item, dict) and item.get("type") == "image":
            texts.append("[image]")
        else:
            texts.append(json.dumps(item))
    return "\n".join(texts)


def normalize_messages_for_compact(messages: List[Message]) -> List[Message]:
    """
    Flatten tool-use and tool-result parts into plain text.

    The summarizer runs without tools, and several providers reject
    tool blocks in a request that declares no tools. The result is a fresh
    linear chain, so dropped messages never break a parent link.
    """
    normalized: List[Message] = []

    def _append(role: str, content: Any, source: Message) -> None:
        normalized.append(
            Message(
                role=role,
                content=content,
                parent_id=normalized[-1].id if normalized else None,
                timestamp=source.timestamp,
            )
        )

    for msg in messages:
        if msg.role == "system" or isinstance(msg.content, str):
            _append(msg.role, msg.content, msg)
            continue

        texts = []
        for part in msg.content:
            if isinstance(part, TextPart):
                texts.append(part.text)
            elif isinstance(part, ToolUsePart):
                texts.append(f"[Tool call: {part.name}({json.dumps(part.input)})]")
            elif isinstance(part, ToolResultPart):
                texts.append(
                    f"[Tool result for {part.tool_name}]: {_stringify(part.result.llm_content)}"
                )
            elif isinstance(part, ImagePart):
                texts.append("[image]")
            elif isinstance(part, ReasoningPart):
                continue

        if not texts:
            continue
        role = "user" if msg.role == "tool" else msg.role
        _append(role, [TextPart("\n".join(texts))], msg)
    return normalized


async def compact(
    messages: List[Message],
    provider: Any,
    summarize: Summarizer,
    language: Optional[str] = None,
) -> str:
    """
    Summarize `messages` and return the summary text.

    Raises:
        CompactionError: The summarizer failed or returned nothing.
    """
    system_prompt = build_compact_system_prompt(language)
    try:
        summary = await summarize(
            normalize_messages_for_compact(messages),
            provider,
            system_prompt,
            COMPACT_USER_PROMPT,
        )
    except Exception as e:
        logger.error("Compaction failed: %s", e, exc_info=True)
        raise CompactionError(f"History compaction failed: {e}", original_error=e) from e

    if not summary or not summary.strip():
        raise CompactionError("Generated summary is empty")
    return summary
