"""
Tool-calling query runner.

Bridges a text generator that can request function calls with the tools served
by an mcphost session. The generator is any async callable; it receives the
conversation so far plus the tool declarations and returns a Generation.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import anyio

from mcphost.shared.exceptions import McpError
from mcphost.types import CallToolResult, Tool

logger = logging.getLogger(__name__)

Content = dict[str, Any]


@dataclass
class FunctionCall:
    name: str | None
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class Generation:
    """One turn produced by the generator.

    ``content`` is the model turn to record in the conversation before tool
    results are appended; it may be omitted.
    """

    text: str | None = None
    function_calls: list[FunctionCall] = field(default_factory=list)
    content: Content | None = None


Generate = Callable[[list[Content], list[dict[str, Any]]], Awaitable[Generation]]


class ToolsClient(Protocol):
    async def list_tools(self) -> list[Tool]: ...

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult: ...


def tool_declaration(tool: Tool) -> dict[str, Any]:
    """Describe a tool as a function declaration for the generator."""
    return {
        "name": tool.name,
        "description": tool.description,
        "parameters": {**tool.inputSchema, "type": "object"},
    }


class ToolCallingAgent:
    """Answers queries, calling server tools whenever the generator asks for them."""

    def __init__(self, generate: Generate, tools_client: ToolsClient):
        self.generate = generate
        self.tools_client = tools_client
        self.tool_declarations: list[dict[str, Any]] = []

    async def load_tools(self) -> list[str]:
        """Fetch the server's tools and return their names."""
        tools = await self.tools_client.list_tools()
        self.tool_declarations = [tool_declaration(tool) for tool in tools]
        names = [tool.name for tool in tools]
        logger.info(f"Connected to server with tools: {names}")
        return names

    async def process_query(self, query: str) -> str:
        contents: list[Content] = [{"role": "user", "parts": [{"text": query}]}]
        logger.debug(f"Processing query with {len(self.tool_declarations)} tool declarations")

        response = await self.generate(contents, self.tool_declarations)
        calls = [call for call in response.function_calls if self._has_name(call)]
        if not calls:
            return response.text or ""

        responses: list[dict[str, Any]] = [{} for _ in calls]

        async def run_call(index: int, call: FunctionCall) -> None:
            assert call.name is not None
            logger.info(f"Calling function: {call.name}")
            logger.debug(f"Parameters: {json.dumps(call.args, indent=2)}")
            try:
                result = await self.tools_client.call_tool(call.name, call.args)
            except McpError as e:
                # Reported to the generator as this call's response
                logger.warning(f"Tool {call.name} failed: {e.error.message}")
                responses[index] = {"error": e.error.message}
            else:
                responses[index] = _first_content(result)

        async with anyio.create_task_group() as tg:
            for index, call in enumerate(calls):
                tg.start_soon(run_call, index, call)

        final_text: list[str] = []
        if response.content is not None:
            contents.append(response.content)
        # Results go back in the order the calls were requested, not completion order
        for call, function_response in zip(calls, responses):
            final_text.append(f"[Calling tool {call.name} with args {json.dumps(call.args)}]")
            contents.append(
                {
                    "role": "user",
                    "parts": [{"functionResponse": {"name": call.name, "response": function_response}}],
                }
            )

        follow_up = await self.generate(contents, self.tool_declarations)
        final_text.append(follow_up.text or "")
        return "\n".join(final_text)

    @staticmethod
    def _has_name(call: FunctionCall) -> bool:
        if not call.name:
            logger.error(f"Tool call without a name: {call}")
            return False
        return True


def _first_content(result: CallToolResult) -> dict[str, Any]:
    if not result.content:
        return {}
    return result.content[0].model_dump(mode="json", exclude_none=True)
