"""
Conversation messages and their content parts.

A message is a node in a parent-linked tree: `parent_id` points at the
message it follows, and `None` marks the root of a session.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from taor.tools.base import ToolResult

CANCELED_MESSAGE_TEXT = "[Request interrupted by user]"


def new_message_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TextPart:
    text: str
    type: str = field(default="text", init=False)


@dataclass
class ImagePart:
    data: str
    mime_type: str
    type: str = field(default="image", init=False)


@dataclass
class FilePart:
    data: str
    mime_type: str
    filename: Optional[str] = None
    type: str = field(default="file", init=False)


@dataclass
class ReasoningPart:
    text: str
    provider_metadata: Optional[Dict[str, Any]] = None
    type: str = field(default="reasoning", init=False)


@dataclass
class ToolUsePart:
    id: str
    name: str
    input: Dict[str, Any]
    display_name: Optional[str] = None
    description: Optional[str] = None
    provider_metadata: Optional[Dict[str, Any]] = None
    type: str = field(default="tool_use", init=False)


@dataclass
class ToolResultPart:
    """
    One tool outcome inside a tool-role message.

    After creation only `result` (and the pruning markers) may change,
    when the compression engine replaces stale output with a placeholder.
    """

    tool_call_id: str
    tool_name: str
    input: Dict[str, Any]
    result: ToolResult
    pruned: bool = False
    pruned_at: Optional[float] = None
    type: str = field(default="tool_result", init=False)


Part = Union[TextPart, ImagePart, FilePart, ReasoningPart, ToolUsePart, ToolResultPart]

_PART_TYPES = {
    "text": TextPart,
    "image": ImagePart,
    "file": FilePart,
    "reasoning": ReasoningPart,
    "tool_use": ToolUsePart,
}


@dataclass
class Message:
    """
    Represents a single message in the conversation.

    Assistant messages additionally carry the model id and per-turn usage;
    `ui_content` replaces the content when a front end renders the message.
    """

    role: str  # system | user | assistant | tool
    content: Union[str, List[Any]]
    id: str = field(default_factory=new_message_id)
    parent_id: Optional[str] = None
    timestamp: str = field(default_factory=now_iso)
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Assistant only
    text: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[Dict[str, int]] = None

    ui_content: Optional[str] = None
    hidden: bool = False

    def parts(self) -> List[Any]:
        if isinstance(self.content, str):
            return [TextPart(self.content)]
        return list(self.content)

    def tool_uses(self) -> List[ToolUsePart]:
        if isinstance(self.content, str):
            return []
        return [p for p in self.content if isinstance(p, ToolUsePart)]

    def tool_results(self) -> List[ToolResultPart]:
        if isinstance(self.content, str):
            return []
        return [p for p in self.content if isinstance(p, ToolResultPart)]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "parent_id": self.parent_id,
            "role": self.role,
            "content": (
                self.content
                if isinstance(self.content, str)
                else [part_to_dict(p) for p in self.content]
            ),
            "timestamp": self.timestamp,
        }
        for key in ("text", "model", "usage", "ui_content"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.metadata:
            data["metadata"] = self.metadata
        if self.hidden:
            data["hidden"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        content = data.get("content", "")
        if not isinstance(content, str):
            content = [part_from_dict(p) for p in content]
        return cls(
            role=data["role"],
            content=content,
            id=data.get("id") or new_message_id(),
            parent_id=data.get("parent_id"),
            timestamp=data.get("timestamp") or now_iso(),
            metadata=data.get("metadata") or {},
            text=data.get("text"),
            model=data.get("model"),
            usage=data.get("usage"),
            ui_content=data.get("ui_content"),
            hidden=data.get("hidden", False),
        )


def part_to_dict(part: Any) -> Dict[str, Any]:
    if isinstance(part, ToolResultPart):
        data = {
            "type": part.type,
            "tool_call_id": part.tool_call_id,
            "tool_name": part.tool_name,
            "input": part.input,
            "result": part.result.to_dict(),
        }
        if part.pruned:
            data["pruned"] = True
            data["pruned_at"] = part.pruned_at
        return data
    # `type` is a class-level default, so vars() never holds it.
    data = {"type": part.type}
    data.update({k: v for k, v in vars(part).items() if v is not None and k != "type"})
    return data


def part_from_dict(data: Dict[str, Any]) -> Any:
    part_type = data.get("type")
    if part_type == "tool_result":
        return ToolResultPart(
            tool_call_id=data["tool_call_id"],
            tool_name=data["tool_name"],
            input=data.get("input") or {},
            result=ToolResult.from_dict(data.get("result") or {}),
            pruned=data.get("pruned", False),
            pruned_at=data.get("pruned_at"),
        )
    part_cls = _PART_TYPES.get(part_type)
    if part_cls is None:
        raise ValueError(f"Unknown content part type: {part_type}")
    fields = {k: v for k, v in data.items() if k != "type"}
    return part_cls(**fields)


def create_user_message(
    content: Union[str, List[Any]], parent_id: Optional[str] = None
) -> Message:
    return Message(role="user", content=content, parent_id=parent_id)


def create_tool_result_part(
    tool_call_id: str, tool_name: str, input: Dict[str, Any], result: ToolResult
) -> ToolResultPart:
    return ToolResultPart(
        tool_call_id=tool_call_id, tool_name=tool_name, input=input, result=result
    )


def get_message_text(message: Message) -> str:
    """Display text: the UI label when present, else the concatenated text parts."""
    if message.ui_content:
        return message.ui_content
    if isinstance(message.content, str):
        return message.content
    return "".join(p.text for p in message.content if isinstance(p, TextPart))


def is_tool_result_message(message: Message) -> bool:
    return message.role == "tool" and bool(message.tool_results())


def is_canceled_message(message: Message) -> bool:
    return message.role == "user" and get_message_text(message) == CANCELED_MESSAGE_TEXT


def find_incomplete_tool_uses(
    messages: List[Message],
) -> Optional[Tuple[Message, List[ToolUsePart]]]:
    """
    Tool uses of the last assistant message that have no matching result,
    e.g. because the run was canceled mid-batch.

    Returns:
        (assistant message, incomplete tool uses) or None.
    """
    assistant_index = None
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].role == "assistant":
            assistant_index = i
            break
    if assistant_index is None:
        return None

    assistant = messages[assistant_index]
    tool_uses = assistant.tool_uses()
    if not tool_uses:
        return None

    completed = {
        part.tool_call_id
        for msg in messages[assistant_index + 1:]
        for part in msg.tool_results()
    }
    incomplete = [t for t in tool_uses if t.id not in completed]
    if not incomplete:
        return None
    return assistant, incomplete
