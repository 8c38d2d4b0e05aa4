"""The todo tools published over MCP.

Tool names, descriptions and argument names are part of the public contract
with existing clients.
"""

import json
from typing import Annotated

from pydantic import Field

from todo_mcp.server.tools import ToolManager
from todo_mcp.shared.outcome import Outcome
from todo_mcp.todos.handlers import TodoHandlers
from todo_mcp.types import ToolAnnotations

NonEmptyStr = Annotated[str, Field(min_length=1)]


def _annotations(title: str, *, read_only: bool = False, destructive: bool = False) -> ToolAnnotations:
    return ToolAnnotations(
        title=title,
        readOnlyHint=read_only,
        destructiveHint=destructive,
        idempotentHint=False,
        openWorldHint=True,
    )


def register_todo_tools(manager: ToolManager, handlers: TodoHandlers) -> None:
    """Register the five todo tools on ``manager``, bound to ``handlers``."""

    @manager.tool(
        name="create-todo",
        description="create todo in db",
        annotations=_annotations("Create a todo item"),
    )
    async def create_todo(
        title: NonEmptyStr,
        is_completed: Annotated[bool, Field(alias="isCompleted")] = False,
    ) -> Outcome[str]:
        outcome = await handlers.create(title, is_completed)
        return outcome.map(lambda todo: f"Created new todo with title {todo.title} and id is {todo.id}")

    @manager.tool(
        name="list-all-todos",
        description="List all todo items",
        annotations=_annotations("List all todo items", read_only=True),
    )
    async def list_all_todos() -> Outcome[str]:
        outcome = await handlers.list_all()
        return outcome.map(
            lambda todos: json.dumps([todo.model_dump(by_alias=True, mode="json") for todo in todos])
        )

    @manager.tool(
        name="update-todo-using-title",
        description="Update title of todo using existing title",
        annotations=_annotations("Update title of todo"),
    )
    async def update_todo_using_title(
        existing_title: Annotated[str, Field(alias="existingTitle", min_length=1)],
        new_title: Annotated[str, Field(alias="newTitle", min_length=1)],
    ) -> Outcome[str]:
        outcome = await handlers.update_title(existing_title, new_title)
        return outcome.map(lambda todo: f"Title of todo {existing_title} has changed to {todo.title}")

    @manager.tool(
        name="change-status-of-todo-using-title-of-todo",
        description="change status of todo using title of todo",
        annotations=_annotations("Change status of todo using title of todo"),
    )
    async def change_status_of_todo(
        title: NonEmptyStr,
        is_completed: Annotated[bool, Field(alias="isCompleted")],
    ) -> Outcome[str]:
        outcome = await handlers.update_status(title, is_completed)
        return outcome.map(
            lambda todo: f"Updated todo {todo.title} to isCompleted: {str(todo.is_completed).lower()}"
        )

    @manager.tool(
        name="delete-todo-using-title",
        description="Delete todo using title of todo",
        annotations=_annotations("Delete todo using title of todo", destructive=True),
    )
    async def delete_todo_using_title(title: NonEmptyStr) -> Outcome[str]:
        outcome = await handlers.delete(title)
        return outcome.map(
            lambda todo: f'Todo with title "{title}" is deleted successfully and id was {todo.id}'
        )
