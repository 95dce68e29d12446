# Test suite for the tool registry

import pytest

from taor.exceptions import ToolInputValidationError, ToolNotFoundError
from taor.tools.base import BaseTool, ExecutionStatus, ToolResult, ToolSchema
from taor.tools.registry import ToolRegistry


class StrictTool(BaseTool):
    @property
    def schema(self) -> ToolSchema:
        return ToolSchema(
            name="strict",
            description="Rejects negative counts. " * 10,
            parameters={"count": {"type": "integer"}},
            required_params=["count"],
        )

    async def execute(self, count) -> ToolResult:
        if count < 0:
            raise ToolInputValidationError("count must be >= 0", tool_name="strict")
        return ToolResult.success_result(str(count), count=count)


class TestToolRegistry:
    @pytest.mark.asyncio
    async def test_invoke_sync_tool(self, registry, echo_tool):
        result = await registry.invoke("echo", '{"text": "hi"}', "c1")

        assert result.status == ExecutionStatus.SUCCESS
        assert result.llm_content == "hi"
        assert echo_tool.calls == [{"text": "hi"}]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        result = await registry.invoke("nope", "{}", "c1")

        assert result.status == ExecutionStatus.NOT_FOUND
        assert result.llm_content == "Tool nope not found"

    @pytest.mark.asyncio
    async def test_bad_json(self, registry):
        result = await registry.invoke("echo", "{oops", "c1")

        assert result.status == ExecutionStatus.INVALID_PARAMS
        assert "parse failed" in result.llm_content

    @pytest.mark.asyncio
    async def test_missing_required_params(self, registry):
        result = await registry.invoke("write", '{"content": "x"}', "c1")

        assert result.status == ExecutionStatus.INVALID_PARAMS
        assert result.metadata["missing"] == ["path"]

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_internal_error(self, registry):
        result = await registry.invoke("boom", "{}", "c1")

        assert result.status == ExecutionStatus.INTERNAL_ERROR
        assert result.llm_content == "Tool execution error: kaboom"
        assert result.is_error

    @pytest.mark.asyncio
    async def test_validation_error_becomes_invalid_params(self):
        registry = ToolRegistry([StrictTool()])

        bad = await registry.invoke("strict", '{"count": -1}', "c1")
        good = await registry.invoke("strict", '{"count": 2}', "c2")

        assert bad.status == ExecutionStatus.INVALID_PARAMS
        assert bad.llm_content == "count must be >= 0"
        assert good.metadata == {"count": 2}

    def test_register_and_unregister(self, registry):
        assert registry.list() == ["echo", "write", "boom"]

        registry.unregister("boom")

        assert len(registry) == 2
        assert registry.get("boom") is None
        with pytest.raises(ToolNotFoundError):
            registry.unregister("boom")

    def test_provider_tools(self, registry):
        tools = registry.to_provider_tools()

        echo = tools[0]
        assert echo == {
            "type": "function",
            "name": "echo",
            "description": "Echo the given text back.",
            "input_schema": {
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            },
        }
        assert tools[2]["input_schema"] == {"type": "object", "properties": {}}

    def test_description_limit(self):
        registry = ToolRegistry([StrictTool()], description_limit=20)

        description = registry.to_provider_tools()[0]["description"]

        assert len(description) == 20
        assert description.endswith("...")


class TestToolResult:
    def test_bool_constructor(self):
        assert ToolResult(True, "ok").status == ExecutionStatus.SUCCESS
        assert ToolResult(False, "bad").status == ExecutionStatus.INTERNAL_ERROR

    def test_dict_round_trip(self):
        result = ToolResult.timeout("took too long")

        restored = ToolResult.from_dict(result.to_dict())

        assert restored.status == ExecutionStatus.TIMEOUT
        assert restored.llm_content == "took too long"
