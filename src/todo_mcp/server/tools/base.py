from __future__ import annotations as _annotations

import functools
import inspect
from collections.abc import Callable
from typing import Any

import pydantic
from pydantic import BaseModel, Field

from todo_mcp.server.exceptions import ToolError, ValidationError
from todo_mcp.server.utilities.func_metadata import FuncMetadata, func_metadata
from todo_mcp.types import Tool as MCPTool
from todo_mcp.types import ToolAnnotations


class Tool(BaseModel):
    """A registered operation: the callable plus everything ``tools/list`` publishes about it."""

    fn: Callable[..., Any] = Field(exclude=True)
    name: str
    title: str | None = None
    description: str
    parameters: dict[str, Any] = Field(description="Input JSON schema, keyed by wire names")
    fn_metadata: FuncMetadata
    is_async: bool
    annotations: ToolAnnotations | None = None

    @classmethod
    def from_function(
        cls,
        fn: Callable[..., Any],
        name: str | None = None,
        title: str | None = None,
        description: str | None = None,
        annotations: ToolAnnotations | None = None,
    ) -> Tool:
        tool_name = name or fn.__name__
        if tool_name == "<lambda>":
            raise ValueError("You must provide a name for lambda functions")

        metadata = func_metadata(fn)
        return cls(
            fn=fn,
            name=tool_name,
            title=title,
            description=inspect.cleandoc(description or fn.__doc__ or ""),
            parameters=metadata.arg_model.model_json_schema(by_alias=True),
            fn_metadata=metadata,
            is_async=_is_async_callable(fn),
            annotations=annotations,
        )

    def to_mcp_tool(self) -> MCPTool:
        return MCPTool(
            name=self.name,
            title=self.title,
            description=self.description,
            inputSchema=self.parameters,
            annotations=self.annotations,
        )

    def validate_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Check ``arguments`` against the input schema.

        Raises:
            ValidationError: listing each offending field, without echoing the input.
        """
        try:
            return self.fn_metadata.validate_arguments(arguments)
        except pydantic.ValidationError as e:
            errors = e.errors(include_url=False, include_context=False, include_input=False)
            raise ValidationError(f"Invalid arguments for tool {self.name}: {_summarize(errors)}", errors) from e

    async def run(self, arguments: dict[str, Any]) -> Any:
        """Validate, then call the function. The function never sees invalid input."""
        kwargs = self.validate_arguments(arguments)
        try:
            return await self.fn_metadata.invoke(self.fn, self.is_async, kwargs)
        except Exception as e:
            raise ToolError(f"Error executing tool {self.name}: {e}") from e


def _summarize(errors: list[Any]) -> str:
    def describe(error: Any) -> str:
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        return f"{location}: {error.get('msg', 'invalid value')}"

    return "; ".join(describe(error) for error in errors)


def _is_async_callable(obj: Any) -> bool:
    while isinstance(obj, functools.partial):
        obj = obj.func
    return inspect.iscoroutinefunction(obj) or inspect.iscoroutinefunction(getattr(obj, "__call__", None))
