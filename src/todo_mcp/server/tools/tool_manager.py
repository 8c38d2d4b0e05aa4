from __future__ import annotations as _annotations

from collections.abc import Callable
from typing import Any

from todo_mcp.server.exceptions import UnknownToolError
from todo_mcp.server.tools.base import Tool
from todo_mcp.server.utilities.logging import get_logger
from todo_mcp.types import ToolAnnotations

logger = get_logger(__name__)


class ToolManager:
    """Registry of the tools a server exposes.

    Tools are added once while the server is assembled and are then shared,
    read-only, by every session.
    """

    def __init__(self, warn_on_duplicate_tools: bool = True):
        self._tools: dict[str, Tool] = {}
        self.warn_on_duplicate_tools = warn_on_duplicate_tools

    def get_tool(self, name: str) -> Tool | None:
        """Get tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        """List all registered tools."""
        return list(self._tools.values())

    def add_tool(
        self,
        fn: Callable[..., Any],
        name: str | None = None,
        title: str | None = None,
        description: str | None = None,
        annotations: ToolAnnotations | None = None,
    ) -> Tool:
        """Add a tool to the server."""
        tool = Tool.from_function(
            fn,
            name=name,
            title=title,
            description=description,
            annotations=annotations,
        )
        existing = self._tools.get(tool.name)
        if existing:
            if self.warn_on_duplicate_tools:
                logger.warning(f"Tool already exists: {tool.name}")
            return existing

        self._tools[tool.name] = tool
        return tool

    def tool(
        self,
        name: str | None = None,
        title: str | None = None,
        description: str | None = None,
        annotations: ToolAnnotations | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator to register a tool.

        Example:
            @manager.tool(name="create-todo")
            async def create_todo(title: str) -> str:
                ...
        """
        if callable(name):
            raise TypeError(
                "The @tool decorator was used incorrectly. Did you forget to call it? Use @tool() instead of @tool"
            )

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add_tool(fn, name=name, title=title, description=description, annotations=annotations)
            return fn

        return decorator

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Call a tool by name with arguments."""
        tool = self.get_tool(name)
        if not tool:
            raise UnknownToolError(f"Unknown tool: {name}")

        return await tool.run(arguments)
