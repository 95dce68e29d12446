"""
Tool Registry - lookup, invocation and provider schemas for tools.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from taor.exceptions import ToolInputValidationError, ToolNotFoundError
from .base import BaseTool, ToolResult


class ToolRegistry:
    """
    Holds the tools available to one loop run.

    invoke() never raises for tool-level problems (unknown tool, bad JSON,
    missing parameters, a tool that throws); those become error results the
    model can read and react to.
    """

    def __init__(self, tools: Optional[Iterable[BaseTool]] = None, description_limit: int = 0):
        """
        Args:
            tools: Tools to register, keyed by their schema name.
            description_limit: Truncate provider-facing descriptions to this
                many characters (0 = no limit). Some providers reject long
                descriptions.
        """
        self.logger = logging.getLogger(__name__)
        self.description_limit = description_limit
        self._tools: Dict[str, BaseTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        name = tool.schema.name
        if name in self._tools:
            self.logger.debug("Replacing tool: %s", name)
        self._tools[name] = tool

    def unregister(self, name: str) -> None:
        if name not in self._tools:
            raise ToolNotFoundError(f"Tool '{name}' not found", tool_name=name)
        del self._tools[name]

    def list(self) -> List[str]:
        return list(self._tools.keys())

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def __len__(self) -> int:
        return len(self._tools)

    async def invoke(self, name: str, json_params: str, call_id: str) -> ToolResult:
        """
        Execute a tool with pre-validation.

        Args:
            name: The name of the tool to execute.
            json_params: The arguments as a JSON object string.
            call_id: The provider's tool-call id, for logging.

        Returns:
            ToolResult: The result of the execution.
        """
        tool = self._tools.get(name)
        if tool is None:
            self.logger.warning("Tool %s not found (call %s)", name, call_id)
            return ToolResult.not_found(name)

        try:
            params = json.loads(json_params)
        except json.JSONDecodeError as e:
            return ToolResult.invalid_params(f"Tool parameters parse failed: {e}")
        if not isinstance(params, dict):
            return ToolResult.invalid_params("Tool parameters must be a JSON object")

        missing = tool.validate_parameters(params)
        if missing:
            return ToolResult.invalid_params(
                f"Missing required parameters: {missing}", missing_params=missing
            )

        return await self._run_tool_execution(tool, name, params, call_id)

    async def _run_tool_execution(
        self, tool: BaseTool, name: str, params: Dict[str, Any], call_id: str
    ) -> ToolResult:
        try:
            if asyncio.iscoroutinefunction(tool.execute):
                result = await tool.execute(**params)
            else:
                result = await asyncio.to_thread(tool.execute, **params)
            self.logger.debug("Tool %s (%s) finished: %s", name, call_id, result.status.value)
            return result

        except ToolInputValidationError as e:
            return ToolResult.invalid_params(str(e))
        except Exception as e:  # pylint: disable=broad-exception-caught
            self.logger.error("Tool execution error '%s'", name, exc_info=True)
            return ToolResult.internal_error(f"Tool execution error: {str(e)}")

    def to_provider_tools(self) -> List[Dict[str, Any]]:
        """Function-tool definitions in provider-neutral form."""
        tools = []
        for name, tool in self._tools.items():
            schema = tool.schema
            description = schema.description
            limit = self.description_limit
            if limit > 0 and len(description) > limit:
                description = f"{description[: limit - 3]}..."
            tools.append(
                {
                    "type": "function",
                    "name": name,
                    "description": description,
                    "input_schema": schema.to_json_schema(),
                }
            )
        return tools
