#!/usr/bin/env python3
"""
Conversation History
====================
Owns the message log of one session as a parent-linked tree and keeps it
inside the model's context budget.

Only the active path (newest message back to the root) is ever sent to a
provider, so abandoned branches can stay in the log.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Tuple, Union

from taor.exceptions.context import CompactionError, UnsupportedPartError
from taor.tools.base import ExecutionStatus, ToolResult
from .compaction import COMPACT_MESSAGE, Summarizer, compact
from .compression import CompressionConfig, PruneResult, is_overflow, prune
from .message import (
    FilePart,
    ImagePart,
    Message,
    ReasoningPart,
    TextPart,
    ToolResultPart,
    ToolUsePart,
    find_incomplete_tool_uses,
)
from .usage import Usage

logger = logging.getLogger(__name__)

OnMessage = Callable[[Message], Union[None, Awaitable[None]]]

_LAST = object()


@dataclass
class CompressResult:
    compressed: bool = False
    pruned: bool = False
    summary: Optional[str] = None
    prune_result: PruneResult = field(default_factory=PruneResult)


def _split_data_url(data: str) -> Tuple[str, Optional[str]]:
    """Raw base64 payload plus the `data:...;base64,` prefix it came with, if any."""
    if ";base64," in data:
        prefix, payload = data.split(";base64,", 1)
        return payload, prefix + ";base64,"
    return data, None


def _join_data_url(item: Dict[str, Any], key: str = "data") -> str:
    return (item.get("data_prefix") or "") + item[key]


class History:
    """Append-only message log with an id index for path walks."""

    def __init__(
        self,
        messages: Optional[List[Message]] = None,
        on_message: Optional[OnMessage] = None,
        compression_config: Optional[CompressionConfig] = None,
        summarize: Optional[Summarizer] = None,
    ):
        self._messages: List[Message] = list(messages or [])
        self._index: Dict[str, Message] = {m.id: m for m in self._messages}
        self.on_message = on_message
        self.compression_config = compression_config or CompressionConfig()
        self.summarize = summarize

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def get(self, message_id: str) -> Optional[Message]:
        return self._index.get(message_id)

    @property
    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    async def add_message(
        self,
        message: Message,
        message_id: Optional[str] = None,
        parent_id: Any = _LAST,
    ) -> Message:
        """
        Append `message` as a child of the newest message (or of an explicit
        `parent_id`, to fork) and notify the observer.
        """
        if message_id:
            message.id = message_id
        if parent_id is _LAST:
            message.parent_id = self._messages[-1].id if self._messages else None
        else:
            if parent_id is not None and parent_id not in self._index:
                raise ValueError(f"Unknown parent message: {parent_id}")
            message.parent_id = parent_id

        self._messages.append(message)
        self._index[message.id] = message
        await self._notify(message)
        return message

    async def _notify(self, message: Message) -> None:
        if self.on_message is None:
            return
        result = self.on_message(message)
        if inspect.isawaitable(result):
            await result

    def messages_to(self, message_id: str) -> List[Message]:
        """
        The path from the root to `message_id`, in log order.

        An unknown id yields an empty list.
        """
        target = self._index.get(message_id)
        if target is None:
            return []

        path_ids = set()
        current: Optional[Message] = target
        while current is not None and current.id not in path_ids:
            path_ids.add(current.id)
            if current.parent_id is None:
                break
            current = self._index.get(current.parent_id)

        return [m for m in self._messages if m.id in path_ids]

    def active_path(self, message_id: Optional[str] = None) -> List[Message]:
        if message_id is None:
            if not self._messages:
                return []
            message_id = self._messages[-1].id
        return self.messages_to(message_id)

    def find_incomplete_tool_uses(self):
        return find_incomplete_tool_uses(self.active_path())

    # --- Provider format ---

    def to_provider_messages(self, messages: Optional[List[Message]] = None) -> List[Dict[str, Any]]:
        """
        Structural conversion of the active path into provider-neutral dicts.

        Raises:
            UnsupportedPartError: A part type has no provider representation.
        """
        if messages is None:
            messages = self.active_path()
        return [to_provider_message(m) for m in messages]

    # --- Compression ---

    def last_assistant_usage(self) -> Usage:
        """
        Usage of the newest assistant turn on the active path.

        The path stops at its root, so turns before a compaction or on an
        abandoned branch never count.
        """
        for message in reversed(self.active_path()):
            if message.role == "assistant":
                return Usage.from_assistant_message(message)
        return Usage.empty()

    def should_compress(self, context_window: int, usage: Usage) -> bool:
        if usage.total_tokens < self.compression_config.min_token_threshold:
            return False
        return is_overflow(
            usage.prompt_tokens,
            context_window,
            self.compression_config,
            cache_read_tokens=usage.cache_read_tokens,
        )

    async def compress(self, provider, language: Optional[str] = None) -> CompressResult:
        """
        Prune, then compact if the history still overflows.

        Raises:
            CompactionError: Summarization failed; history is left untouched.
        """
        if not self._messages:
            return CompressResult()

        context_window = provider.model.context_limit
        usage = self.last_assistant_usage()
        if not self.should_compress(context_window, usage):
            return CompressResult()

        logger.debug("Step 1: attempting pruning")
        prune_result = prune(self.active_path(), self.compression_config)
        if prune_result.pruned:
            logger.info(
                "Pruned %d tool outputs (~%d tokens)",
                prune_result.pruned_count,
                prune_result.pruned_tokens,
            )
            remaining = usage.clone()
            remaining.prompt_tokens = max(0, usage.prompt_tokens - prune_result.pruned_tokens)
            remaining.total_tokens = max(0, usage.total_tokens - prune_result.pruned_tokens)
            if not self.should_compress(context_window, remaining):
                logger.debug("Pruning was sufficient, skipping compaction")
                return CompressResult(pruned=True, prune_result=prune_result)

        logger.debug("Step 2: executing compaction")
        if self.summarize is None:
            raise CompactionError("History compaction failed: no summarizer configured")
        summary = await compact(self.active_path(), provider, self.summarize, language)

        summary_message = Message(
            role="user",
            content=[TextPart(summary)],
            parent_id=None,
            ui_content=COMPACT_MESSAGE,
        )
        self._messages = [summary_message]
        self._index = {summary_message.id: summary_message}
        await self._notify(summary_message)
        logger.info("History compacted into a %d character summary", len(summary))

        return CompressResult(
            compressed=True,
            pruned=prune_result.pruned,
            summary=summary,
            prune_result=prune_result,
        )


def _media_part(part: Union[ImagePart, FilePart]) -> Dict[str, Any]:
    payload, prefix = _split_data_url(part.data)
    if isinstance(part, ImagePart):
        data: Dict[str, Any] = {"type": "image", "image": payload, "media_type": part.mime_type}
    else:
        data = {"type": "file", "data": payload, "media_type": part.mime_type}
        if part.filename:
            data["filename"] = part.filename
    if prefix:
        data["data_prefix"] = prefix
    return data


def _tool_output(result: ToolResult) -> Dict[str, Any]:
    content = result.llm_content
    if isinstance(content, str):
        return {"type": "text", "value": content}

    values = []
    for item in content:
        item_type = item.get("type") if isinstance(item, dict) else type(item).__name__
        if item_type == "text":
            values.append({"type": "text", "value": item["text"]})
        elif item_type == "image":
            payload, prefix = _split_data_url(item["data"])
            media = {"type": "media", "data": payload, "media_type": item.get("mime_type")}
            if prefix:
                media["data_prefix"] = prefix
            values.append(media)
        else:
            raise UnsupportedPartError(item_type, "tool")
    return {"type": "content", "value": values}


def to_provider_message(message: Message) -> Dict[str, Any]:
    role = message.role
    if role == "system":
        return {"role": "system", "content": message.content}

    if isinstance(message.content, str):
        if role == "tool":
            raise UnsupportedPartError("text", "tool")
        return {"role": role, "content": [{"type": "text", "text": message.content}]}

    content = []
    for part in message.content:
        if isinstance(part, TextPart) and role in ("user", "assistant"):
            content.append({"type": "text", "text": part.text})
        elif isinstance(part, (ImagePart, FilePart)) and role == "user":
            content.append(_media_part(part))
        elif isinstance(part, ReasoningPart) and role == "assistant":
            data = {"type": "reasoning", "text": part.text}
            if part.provider_metadata:
                data["provider_metadata"] = part.provider_metadata
            content.append(data)
        elif isinstance(part, ToolUsePart) and role == "assistant":
            data = {
                "type": "tool-call",
                "tool_call_id": part.id,
                "tool_name": part.name,
                "input": part.input,
            }
            if part.provider_metadata:
                data["provider_metadata"] = part.provider_metadata
            content.append(data)
        elif isinstance(part, ToolResultPart) and role == "tool":
            content.append(
                {
                    "type": "tool-result",
                    "tool_call_id": part.tool_call_id,
                    "tool_name": part.tool_name,
                    "input": part.input,
                    "output": _tool_output(part.result),
                    "is_error": part.result.is_error,
                    "status": part.result.status.value,
                }
            )
        else:
            part_type = getattr(part, "type", None) or type(part).__name__
            raise UnsupportedPartError(part_type, role)

    if role not in ("user", "assistant", "tool"):
        raise UnsupportedPartError("message", role)
    return {"role": role, "content": content}


def from_provider_message(data: Dict[str, Any]) -> Message:
    """
    Rebuild a Message from its provider form.

    The inverse of to_provider_message: part kinds, data URL prefixes and
    tool-result status all survive the round trip.
    """
    role = data["role"]
    if role == "system":
        return Message(role="system", content=data["content"])

    parts = []
    for item in data["content"]:
        item_type = item.get("type")
        if item_type == "text":
            parts.append(TextPart(item["text"]))
        elif item_type == "image":
            parts.append(ImagePart(_join_data_url(item, "image"), item["media_type"]))
        elif item_type == "file":
            parts.append(FilePart(_join_data_url(item), item["media_type"], item.get("filename")))
        elif item_type == "reasoning":
            parts.append(ReasoningPart(item["text"], item.get("provider_metadata")))
        elif item_type == "tool-call":
            parts.append(
                ToolUsePart(
                    item["tool_call_id"],
                    item["tool_name"],
                    item["input"],
                    provider_metadata=item.get("provider_metadata"),
                )
            )
        elif item_type == "tool-result":
            output = item["output"]
            if output["type"] == "text":
                llm_content = output["value"]
            else:
                llm_content = [
                    {"type": "text", "text": v["value"]}
                    if v["type"] == "text"
                    else {"type": "image", "data": _join_data_url(v), "mime_type": v["media_type"]}
                    for v in output["value"]
                ]
            status = item.get("status")
            if status is None:
                status = not item.get("is_error", False)
            else:
                status = ExecutionStatus(status)
            parts.append(
                ToolResultPart(
                    tool_call_id=item["tool_call_id"],
                    tool_name=item["tool_name"],
                    input=item.get("input") or {},
                    result=ToolResult(status, llm_content),
                )
            )
        else:
            raise UnsupportedPartError(str(item_type), role)
    return Message(role=role, content=parts)
