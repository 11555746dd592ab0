import logging
from typing import Annotated, Any

import pytest
from pydantic import Field

from mcphost.server.exceptions import (
    InvalidArgumentsError,
    InvalidSignature,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)
from mcphost.server.tools import FunctionTool, ToolContext, ToolDispatcher, ToolHandler
from mcphost.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    CallToolRequestParams,
    CallToolResult,
    ImageContent,
    TextContent,
    Tool,
)


class UpperTool(ToolHandler):
    name = "upper"
    description = "Upper-case a string."

    def describe(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema={"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
        )

    async def invoke(self, arguments: dict[str, Any], context: ToolContext | None = None) -> CallToolResult:
        if "text" not in arguments:
            raise InvalidArgumentsError("text is required")
        return CallToolResult(content=[TextContent(text=str(arguments["text"]).upper())])


def call(name: str, arguments: dict[str, Any] | None = None) -> CallToolRequestParams:
    return CallToolRequestParams(name=name, arguments=arguments)


class TestRegistration:
    def test_register_handler(self):
        dispatcher = ToolDispatcher(tools=[UpperTool()])

        assert dispatcher.get_tool("upper") is not None
        assert [t.name for t in dispatcher.list_tools()] == ["upper"]

    def test_nothing_registered_by_default(self):
        assert ToolDispatcher().list_tools() == []

    def test_add_function(self):
        dispatcher = ToolDispatcher()

        def add(a: int, b: int) -> int:
            """Add two numbers."""
            return a + b

        dispatcher.add_tool(add)

        [tool] = dispatcher.list_tools()
        assert tool.name == "add"
        assert tool.description == "Add two numbers."
        assert tool.inputSchema["properties"]["a"]["type"] == "integer"
        assert tool.inputSchema["required"] == ["a", "b"]

    def test_decorator_with_custom_name(self):
        dispatcher = ToolDispatcher()

        @dispatcher.tool(name="sum", description="Sum things")
        def add(a: int, b: int) -> int:
            return a + b

        assert add(1, 2) == 3
        tool = dispatcher.get_tool("sum")
        assert tool is not None
        assert tool.description == "Sum things"

    def test_decorator_without_parentheses(self):
        dispatcher = ToolDispatcher()

        with pytest.raises(TypeError, match="Did you forget to call it"):

            @dispatcher.tool  # type: ignore[arg-type]
            def add(a: int, b: int) -> int:  # pragma: no cover
                return a + b

    def test_duplicate_keeps_first(self, caplog: pytest.LogCaptureFixture):
        dispatcher = ToolDispatcher()
        first = dispatcher.register(UpperTool())

        with caplog.at_level(logging.WARNING):
            second = dispatcher.register(UpperTool())

        assert second is first
        assert dispatcher.get_tool("upper") is first
        assert "Tool already exists: upper" in caplog.text

    def test_duplicate_warning_can_be_disabled(self, caplog: pytest.LogCaptureFixture):
        dispatcher = ToolDispatcher(warn_on_duplicate_tools=False)
        dispatcher.register(UpperTool())

        with caplog.at_level(logging.WARNING):
            dispatcher.register(UpperTool())

        assert "Tool already exists" not in caplog.text

    def test_handler_without_name(self):
        class Nameless(UpperTool):
            name = ""

        with pytest.raises(ValueError):
            ToolDispatcher().register(Nameless())

    def test_lambda_requires_name(self):
        with pytest.raises(ValueError, match="lambda"):
            FunctionTool.from_function(lambda x: x)

        tool = FunctionTool.from_function(lambda x: x, name="identity")
        assert tool.name == "identity"

    def test_rejects_var_args(self):
        def variadic(*args: int) -> int:  # pragma: no cover
            return sum(args)

        with pytest.raises(InvalidSignature):
            FunctionTool.from_function(variadic)

    def test_rejects_private_parameter_names(self):
        def private(_secret: str) -> str:  # pragma: no cover
            return _secret

        with pytest.raises(InvalidSignature):
            FunctionTool.from_function(private)

    def test_context_parameter_is_not_in_schema(self):
        async def logged(text: str, ctx: ToolContext) -> str:  # pragma: no cover
            return text

        tool = FunctionTool.from_function(logged)

        assert tool.context_kwarg == "ctx"
        assert list(tool.describe().inputSchema["properties"]) == ["text"]

    def test_annotated_field_description(self):
        def greet(name: Annotated[str, Field(description="Who to greet")], greeting: str = "Hello") -> str:
            return f"{greeting}, {name}!"

        schema = FunctionTool.from_function(greet).describe().inputSchema

        assert schema["properties"]["name"]["description"] == "Who to greet"
        assert schema["required"] == ["name"]


class TestDispatch:
    @pytest.mark.anyio
    async def test_dispatch_handler(self):
        dispatcher = ToolDispatcher(tools=[UpperTool()])

        result = await dispatcher.dispatch(call("upper", {"text": "abc"}))

        assert result.content == [TextContent(text="ABC")]
        assert not result.isError

    @pytest.mark.anyio
    async def test_tool_not_found(self):
        with pytest.raises(ToolNotFoundError) as exc_info:
            await ToolDispatcher().dispatch(call("missing", {}))

        assert exc_info.value.error.code == INVALID_PARAMS
        assert exc_info.value.error.message == "Tool not found: missing"

    @pytest.mark.anyio
    async def test_arguments_undefined(self):
        dispatcher = ToolDispatcher(tools=[UpperTool()])

        with pytest.raises(InvalidArgumentsError, match="arguments undefined"):
            await dispatcher.dispatch(call("upper"))

    @pytest.mark.anyio
    async def test_arguments_checked_before_name(self):
        with pytest.raises(InvalidArgumentsError, match="arguments undefined"):
            await ToolDispatcher().dispatch(call(""))

    @pytest.mark.anyio
    async def test_name_undefined(self):
        with pytest.raises(InvalidArgumentsError, match="tool name undefined"):
            await ToolDispatcher().dispatch(call("", {}))

    @pytest.mark.anyio
    async def test_handler_rejects_arguments(self):
        dispatcher = ToolDispatcher(tools=[UpperTool()])

        with pytest.raises(InvalidArgumentsError) as exc_info:
            await dispatcher.dispatch(call("upper", {}))

        assert exc_info.value.error.code == INVALID_PARAMS

    @pytest.mark.anyio
    async def test_function_argument_validation(self):
        dispatcher = ToolDispatcher()

        @dispatcher.tool()
        def repeat(text: str, times: int) -> str:  # pragma: no cover
            return text * times

        with pytest.raises(InvalidArgumentsError):
            await dispatcher.dispatch(call("repeat", {"text": "a", "times": "many"}))
        with pytest.raises(InvalidArgumentsError):
            await dispatcher.dispatch(call("repeat", {"text": "a"}))

    @pytest.mark.anyio
    async def test_execution_failure(self):
        dispatcher = ToolDispatcher()

        @dispatcher.tool()
        async def explode() -> str:
            raise ValueError("kaboom")

        with pytest.raises(ToolExecutionError) as exc_info:
            await dispatcher.dispatch(call("explode", {}))

        assert exc_info.value.error.code == INTERNAL_ERROR
        assert exc_info.value.error.message == "Error executing tool explode: kaboom"
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.anyio
    async def test_tool_error_passes_through(self):
        dispatcher = ToolDispatcher()

        @dispatcher.tool()
        def picky() -> str:
            raise ToolError("custom failure", code=-32099)

        with pytest.raises(ToolError) as exc_info:
            await dispatcher.dispatch(call("picky", {}))

        assert not isinstance(exc_info.value, ToolExecutionError)
        assert exc_info.value.error.code == -32099

    @pytest.mark.anyio
    async def test_error_result_passes_through(self):
        dispatcher = ToolDispatcher()

        @dispatcher.tool()
        def soft_failure() -> CallToolResult:
            return CallToolResult(content=[TextContent(text="not today")], isError=True)

        result = await dispatcher.dispatch(call("soft_failure", {}))

        assert result.isError
        assert result.content == [TextContent(text="not today")]

    @pytest.mark.anyio
    async def test_result_conversion(self):
        dispatcher = ToolDispatcher()

        @dispatcher.tool()
        def many() -> list[Any]:
            return ["one", ImageContent(data="aGk=", mimeType="image/png"), {"n": 2}]

        @dispatcher.tool()
        def nothing() -> None:
            return None

        result = await dispatcher.dispatch(call("many", {}))
        assert result.content[0] == TextContent(text="one")
        assert isinstance(result.content[1], ImageContent)
        assert result.content[2] == TextContent(text='{\n  "n": 2\n}')

        assert (await dispatcher.dispatch(call("nothing", {}))).content == []

    @pytest.mark.anyio
    async def test_default_arguments(self):
        dispatcher = ToolDispatcher()

        @dispatcher.tool()
        async def greet(name: str, greeting: str = "Hello") -> str:
            return f"{greeting}, {name}!"

        result = await dispatcher.dispatch(call("greet", {"name": "World"}))

        assert result.content == [TextContent(text="Hello, World!")]

    @pytest.mark.anyio
    async def test_context_is_injected(self):
        dispatcher = ToolDispatcher()
        seen: list[ToolContext | None] = []

        @dispatcher.tool()
        async def spy(ctx: ToolContext) -> str:
            seen.append(ctx)
            return "ok"

        sentinel = object.__new__(ToolContext)
        await dispatcher.dispatch(call("spy", {}), sentinel)

        assert seen == [sentinel]
