# Shared fakes for the taor test suite

from typing import Any, Dict, List, Optional, Union

import pytest

from taor.agent.context.message import Message, TextPart, ToolResultPart, ToolUsePart
from taor.providers.base import (
    BaseProvider,
    Finish,
    ModelInfo,
    StreamRequest,
    StreamResponse,
    TextDelta,
    ToolCall,
)
from taor.tools.base import BaseTool, ToolResult, ToolSchema
from taor.tools.registry import ToolRegistry


async def _aiter(events):
    for event in events:
        yield event


def finish(prompt_tokens: int = 10, completion_tokens: int = 5, **extra) -> Finish:
    usage = {"input_tokens": prompt_tokens, "output_tokens": completion_tokens}
    usage.update(extra)
    return Finish(usage=usage, finish_reason="stop")


def text_turn(text: str, **usage) -> List[Any]:
    return [TextDelta(text), finish(**usage)]


def tool_turn(*calls, text: str = "", **usage) -> List[Any]:
    """calls: (call_id, tool_name, json_input) tuples."""
    events: List[Any] = [TextDelta(text)] if text else []
    events.extend(ToolCall(call_id, name, raw) for call_id, name, raw in calls)
    events.append(finish(**usage))
    return events


class ScriptedProvider(BaseProvider):
    """
    Plays back one script entry per create_stream call.

    An entry is a list of stream events, or an exception to raise when the
    stream is opened.
    """

    def __init__(self, script: List[Union[List[Any], BaseException]], model: Optional[ModelInfo] = None):
        super().__init__(model or ModelInfo("test", "scripted", context_limit=100_000))
        self.script = list(script)
        self.requests: List[StreamRequest] = []

    async def create_stream(self, request: StreamRequest) -> StreamResponse:
        self.requests.append(request)
        if not self.script:
            raise AssertionError("ScriptedProvider ran out of script")
        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        return StreamResponse(
            events=_aiter(entry),
            request_body={"messages": len(request.prompt)},
            response_headers={"x-request-id": request.request_id},
            status_code=200,
        )


class EchoTool(BaseTool):
    """Sync tool; runs in a worker thread."""

    category = "read"
    display_name = "Echo"

    def __init__(self):
        super().__init__()
        self.calls: List[Dict[str, Any]] = []

    @property
    def schema(self) -> ToolSchema:
        return ToolSchema(
            name="echo",
            description="Echo the given text back.",
            parameters={"text": {"type": "string"}},
            required_params=["text"],
        )

    def get_description(self, params, cwd):
        return f"echo {params.get('text', '')}"

    def execute(self, **kwargs) -> ToolResult:
        self.calls.append(kwargs)
        return ToolResult.success_result(kwargs["text"])


class WriteTool(BaseTool):
    category = "write"

    def __init__(self):
        super().__init__()
        self.calls: List[Dict[str, Any]] = []

    @property
    def schema(self) -> ToolSchema:
        return ToolSchema(
            name="write",
            description="Write content to a path.",
            parameters={"path": {"type": "string"}, "content": {"type": "string"}},
            required_params=["path"],
        )

    async def execute(self, **kwargs) -> ToolResult:
        self.calls.append(kwargs)
        return ToolResult.success_result(f"wrote {kwargs['path']}")


class FailingTool(BaseTool):
    @property
    def schema(self) -> ToolSchema:
        return ToolSchema(name="boom", description="Always fails.")

    async def execute(self, **kwargs) -> ToolResult:
        raise RuntimeError("kaboom")


@pytest.fixture
def echo_tool():
    return EchoTool()


@pytest.fixture
def write_tool():
    return WriteTool()


@pytest.fixture
def registry(echo_tool, write_tool):
    return ToolRegistry([echo_tool, write_tool, FailingTool()])


def make_chain(*entries) -> List[Message]:
    """
    Build a linear parent-linked log.

    entries: (role, content) pairs; content may be a str or a list of parts.
    """
    messages: List[Message] = []
    for role, content in entries:
        messages.append(
            Message(
                role=role,
                content=content,
                parent_id=messages[-1].id if messages else None,
            )
        )
    return messages


def tool_exchange(call_id: str, name: str, output: str):
    """An assistant tool-use entry and its matching tool-result entry for make_chain."""
    return (
        ("assistant", [ToolUsePart(id=call_id, name=name, input={})]),
        (
            "tool",
            [
                ToolResultPart(
                    tool_call_id=call_id,
                    tool_name=name,
                    input={},
                    result=ToolResult.success_result(output),
                )
            ],
        ),
    )


def user(text: str):
    return ("user", [TextPart(text)])
