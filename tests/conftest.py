from collections.abc import AsyncIterator
from pathlib import Path
from typing import Annotated

import anyio
import pytest
import sse_starlette
from packaging import version
from pydantic import Field

from todo_mcp.server.models import InitializationOptions
from todo_mcp.server.tools import ToolManager
from todo_mcp.shared.outcome import NotFound, Ok, Outcome
from todo_mcp.storage import Database, TodoStore
from todo_mcp.todos import TodoHandlers


@pytest.fixture
def anyio_backend():
    return "asyncio"


SSE_STARLETTE_VERSION = version.parse(sse_starlette.__version__)
NEEDS_RESET = SSE_STARLETTE_VERSION < version.parse("3.0.0")


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Reset sse-starlette's global AppStatus singleton before each test.

    AppStatus.should_exit_event is a global asyncio.Event that gets bound to
    an event loop. Each test runs on its own loop, so the event is recreated.

    NOTE: This fixture is only necessary for sse-starlette < 3.0.0, which
    replaced the module-level singleton with context-local events.
    """
    if not NEEDS_RESET:
        yield
        return

    # lazy import to avoid import errors
    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]

    yield

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]


@pytest.fixture
def init_options() -> InitializationOptions:
    return InitializationOptions(server_name="test-server", server_version="0.1.0")


@pytest.fixture
def tool_manager() -> ToolManager:
    """A registry with small tools that exercise each result shape."""
    manager = ToolManager()

    async def echo(text: Annotated[str, Field(min_length=1)]) -> Outcome[str]:
        """Echo the text back."""
        return Ok(text)

    async def lookup(query: str) -> Outcome[str]:
        """Never finds anything."""
        return NotFound(query)

    def explode() -> str:
        """Always fails."""
        raise RuntimeError("boom")

    manager.add_tool(echo)
    manager.add_tool(lookup)
    manager.add_tool(explode)
    return manager


@pytest.fixture
async def database(tmp_path: Path) -> AsyncIterator[Database]:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'todos.db'}")
    await db.create_schema()
    yield db
    await db.dispose()


@pytest.fixture
def store(database: Database) -> TodoStore:
    return TodoStore(database)


@pytest.fixture
def handlers(store: TodoStore) -> TodoHandlers:
    return TodoHandlers(store)
