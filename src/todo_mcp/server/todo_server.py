"""TodoServer - the todo MCP server served over Streamable HTTP."""

from __future__ import annotations as _annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

import anyio
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from todo_mcp.server.models import InitializationOptions
from todo_mcp.server.session_registry import SessionRegistry
from todo_mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from todo_mcp.server.streamable_http_manager import StreamableHTTPASGIApp, StreamableHTTPSessionManager
from todo_mcp.server.tools import ToolManager
from todo_mcp.server.transport_security import TransportSecuritySettings, default_allowed_hosts
from todo_mcp.server.utilities.logging import configure_logging, get_logger
from todo_mcp.storage import Database, TodoStore
from todo_mcp.todos import TodoHandlers, register_todo_tools

logger = get_logger(__name__)


class Settings(BaseSettings):
    """Todo MCP server settings.

    All settings can be configured via environment variables with the prefix TODO_MCP_.
    For example, TODO_MCP_PORT=8080 will set port=8080.
    """

    model_config = SettingsConfigDict(
        env_prefix="TODO_MCP_",
        env_file=".env",
        extra="ignore",
    )

    # Server settings
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 4000
    streamable_http_path: str = "/mcp"

    # StreamableHTTP settings
    json_response: bool = False
    """Answer requests with a JSON body instead of an SSE stream."""

    # tool settings
    warn_on_duplicate_tools: bool = True

    # Database settings
    database_url: str = "sqlite+aiosqlite:///./todos.db"
    database_echo: bool = False
    check_database_on_request: bool = True
    """Ping the database before routing each POST; failures are answered with 503."""

    # Transport security settings (DNS rebinding protection)
    enable_dns_rebinding_protection: bool = True
    allowed_hosts: list[str] | None = None
    """Defaults to the loopback names, with and without ``port``."""
    allowed_origins: list[str] = Field(default_factory=list)

    @property
    def transport_security(self) -> TransportSecuritySettings:
        allowed_hosts = self.allowed_hosts if self.allowed_hosts is not None else default_allowed_hosts(self.port)
        return TransportSecuritySettings(
            enable_dns_rebinding_protection=self.enable_dns_rebinding_protection,
            allowed_hosts=allowed_hosts,
            allowed_origins=self.allowed_origins,
        )


class TodoServer:
    """The todo MCP server.

    Wires the todo tools to a shared ToolManager, owns the database and the
    session registry, and builds the Starlette application that serves the
    Streamable HTTP endpoint.

    Args:
        name: Server name announced during initialize
        version: Server version announced during initialize
        instructions: Optional instructions announced during initialize
        settings: Server settings; read from the environment when omitted
        database: Database to use instead of one built from ``settings.database_url``

    Examples:
        ```python
        server = TodoServer(settings=Settings(port=4000))
        server.run()
        ```
    """

    def __init__(
        self,
        name: str = "todo-mcp-server",
        version: str = "1.0.0",
        *,
        instructions: str | None = None,
        settings: Settings | None = None,
        database: Database | None = None,
    ):
        self.name = name
        self.version = version
        self.instructions = instructions
        self.settings = settings or Settings()

        self.database = database or Database(self.settings.database_url, echo=self.settings.database_echo)
        self.store = TodoStore(self.database)
        self.handlers = TodoHandlers(self.store)

        self._tool_manager = ToolManager(warn_on_duplicate_tools=self.settings.warn_on_duplicate_tools)
        register_todo_tools(self._tool_manager, self.handlers)

        self._session_registry = SessionRegistry()
        self._session_manager: StreamableHTTPSessionManager | None = None

        # Configure logging
        configure_logging(self.settings.log_level)

    @property
    def tool_manager(self) -> ToolManager:
        return self._tool_manager

    @property
    def session_registry(self) -> SessionRegistry:
        return self._session_registry

    @property
    def session_manager(self) -> StreamableHTTPSessionManager:
        """Get the StreamableHTTP session manager.

        This is exposed to enable advanced use cases like mounting multiple
        servers in a single Starlette application.

        Raises:
            RuntimeError: If called before streamable_http_app() has been called.
        """
        if self._session_manager is None:
            raise RuntimeError(
                "Session manager can only be accessed after calling streamable_http_app(). "
                "The session manager is created lazily to avoid unnecessary initialization."
            )
        return self._session_manager

    def create_initialization_options(self) -> InitializationOptions:
        return InitializationOptions(
            server_name=self.name,
            server_version=self.version,
            instructions=self.instructions,
        )

    def run(self) -> None:
        """Run the server. This is a synchronous function."""
        anyio.run(self.run_streamable_http_async)

    async def run_streamable_http_async(self) -> None:
        """Run the server using StreamableHTTP transport."""
        import uvicorn

        starlette_app = self.streamable_http_app()

        config = uvicorn.Config(
            starlette_app,
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )
        server = uvicorn.Server(config)
        await server.serve()

    def streamable_http_app(self) -> Starlette:
        """Return an instance of the StreamableHTTP server app."""
        # Create session manager on first call (lazy initialization)
        if self._session_manager is None:
            before_post = self.database.check_connection if self.settings.check_database_on_request else None
            self._session_manager = StreamableHTTPSessionManager(
                tool_manager=self._tool_manager,
                init_options=self.create_initialization_options(),
                registry=self._session_registry,
                json_response=self.settings.json_response,
                security_settings=self.settings.transport_security,
                before_post=before_post,
            )

        routes = [
            Route(
                self.settings.streamable_http_path,
                endpoint=StreamableHTTPASGIApp(self._session_manager),
            )
        ]
        middleware = [
            # Browser clients need to read the session header from responses
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
                allow_headers=["*"],
                expose_headers=[MCP_SESSION_ID_HEADER.title()],
            )
        ]

        return Starlette(
            debug=self.settings.debug,
            routes=routes,
            middleware=middleware,
            lifespan=lambda app: self._lifespan(),
        )

    @asynccontextmanager
    async def _lifespan(self) -> AsyncIterator[None]:
        await self.database.create_schema()
        try:
            async with self.session_manager.run():
                logger.info(
                    f"{self.name} {self.version} serving on "
                    f"{self.settings.host}:{self.settings.port}{self.settings.streamable_http_path}"
                )
                yield
        finally:
            await self.database.dispose()
