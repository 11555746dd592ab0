from __future__ import annotations as _annotations

import functools
import inspect
import typing
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import anyio.to_thread
import pydantic_core
from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from mcphost.server.exceptions import InvalidArgumentsError, InvalidSignature
from mcphost.types import CallToolResult, ContentBlock, ImageContent, LoggingLevel, RequestId, TextContent, Tool
from mcphost.utilities.logging import MCP_TO_PYTHON_LEVEL, get_logger

if TYPE_CHECKING:
    from mcphost.server.session import SessionTransport

logger = get_logger(__name__)


class ToolContext:
    """Per-call context handed to tool handlers.

    Gives a handler access to the session it is serving, mainly so it can push
    log notifications to the client while it runs.
    """

    def __init__(self, session: SessionTransport, request_id: RequestId | None = None):
        self._session = session
        self.request_id = request_id

    @property
    def session_id(self) -> str:
        return self._session.session_id

    async def log(self, level: LoggingLevel, data: Any, logger_name: str | None = None) -> None:
        """Send a log notification to the client over the session's push channel."""
        logger.log(MCP_TO_PYTHON_LEVEL[level], "Tool log [%s] %s", self.session_id, data)
        await self._session.send_log_message(level, data, logger_name=logger_name)

    async def debug(self, data: Any) -> None:
        await self.log("debug", data)

    async def info(self, data: Any) -> None:
        await self.log("info", data)

    async def warning(self, data: Any) -> None:
        await self.log("warning", data)

    async def error(self, data: Any) -> None:
        await self.log("error", data)


class ToolHandler(ABC):
    """
    Capability implemented by every tool.

    A tool describes itself (name, description and the JSON schema of its
    arguments) and executes a call. Registering an implementation with the
    ToolDispatcher is all it takes to expose a new tool.
    """

    name: str = ""
    description: str | None = None

    @abstractmethod
    def describe(self) -> Tool:
        """Return the descriptor advertised in tools/list."""
        ...

    @abstractmethod
    async def invoke(self, arguments: dict[str, Any], context: ToolContext | None = None) -> CallToolResult:
        """Execute the tool with already-present arguments."""
        ...


class ArgModelBase(BaseModel):
    """A model representing the arguments to a function."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def model_dump_one_level(self) -> dict[str, Any]:
        """Return the fields one level deep, keeping sub-models as pydantic models."""
        return {field_name: getattr(self, field_name) for field_name in self.__class__.model_fields}


class FunctionTool(ToolHandler):
    """A tool backed by a plain Python function.

    Arguments are validated against a pydantic model built from the function's
    signature. Sync functions run in a worker thread so they never stall the
    event loop serving other sessions.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        name: str,
        description: str | None,
        arg_model: type[ArgModelBase],
        is_async: bool,
        context_kwarg: str | None = None,
    ):
        self.fn = fn
        self.name = name
        self.description = description
        self.arg_model = arg_model
        self.is_async = is_async
        self.context_kwarg = context_kwarg

    @classmethod
    def from_function(
        cls,
        fn: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> FunctionTool:
        """Create a tool from a function."""
        func_name = name or fn.__name__
        if func_name == "<lambda>":
            raise ValueError("You must provide a name for lambda functions")

        context_kwarg = _find_context_parameter(fn)
        arg_model = _build_arg_model(fn, func_name, skip_names=[context_kwarg] if context_kwarg else [])

        return cls(
            fn=fn,
            name=func_name,
            description=description or inspect.getdoc(fn),
            arg_model=arg_model,
            is_async=_is_async_callable(fn),
            context_kwarg=context_kwarg,
        )

    def describe(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.arg_model.model_json_schema(by_alias=True),
        )

    async def invoke(self, arguments: dict[str, Any], context: ToolContext | None = None) -> CallToolResult:
        try:
            parsed = self.arg_model.model_validate(arguments)
        except ValidationError as e:
            raise InvalidArgumentsError(f"Invalid arguments for tool {self.name}: {e}") from e

        kwargs = parsed.model_dump_one_level()
        if self.context_kwarg is not None:
            kwargs[self.context_kwarg] = context

        if self.is_async:
            result = await self.fn(**kwargs)
        else:
            result = await anyio.to_thread.run_sync(functools.partial(self.fn, **kwargs))

        if isinstance(result, CallToolResult):
            return result
        return CallToolResult(content=_convert_to_content(result))


def _build_arg_model(fn: Callable[..., Any], func_name: str, skip_names: list[str]) -> type[ArgModelBase]:
    try:
        hints = typing.get_type_hints(fn, include_extras=True)
    except NameError as e:
        raise InvalidSignature(f"Unable to evaluate type annotations of {func_name}: {e}") from e

    fields: dict[str, Any] = {}
    for param in inspect.signature(fn).parameters.values():
        if param.name in skip_names:
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            raise InvalidSignature(f"Tool {func_name} cannot take *args or **kwargs")
        if param.name.startswith("_"):
            raise InvalidSignature(f"Parameter {param.name} of {func_name} cannot start with '_'")
        annotation = hints.get(param.name, Any)
        default = param.default if param.default is not inspect.Parameter.empty else ...
        fields[param.name] = (annotation, default)

    return create_model(f"{func_name}Arguments", __base__=ArgModelBase, **fields)


def _find_context_parameter(fn: Callable[..., Any]) -> str | None:
    try:
        hints = typing.get_type_hints(fn)
    except NameError:
        return None
    for param_name, annotation in hints.items():
        if param_name == "return":
            continue
        if inspect.isclass(annotation) and issubclass(annotation, ToolContext):
            return param_name
    return None


def _convert_to_content(result: Any) -> list[ContentBlock]:
    if result is None:
        return []

    if isinstance(result, TextContent | ImageContent):
        return [result]

    if isinstance(result, list | tuple):
        return [block for item in result for block in _convert_to_content(item)]

    if not isinstance(result, str):
        result = pydantic_core.to_json(result, fallback=str, indent=2).decode()

    return [TextContent(text=result)]


def _is_async_callable(obj: Any) -> bool:
    while isinstance(obj, functools.partial):
        obj = obj.func

    return inspect.iscoroutinefunction(obj) or (
        callable(obj) and inspect.iscoroutinefunction(getattr(obj, "__call__", None))
    )


__all__ = ["ArgModelBase", "FunctionTool", "ToolContext", "ToolHandler"]
