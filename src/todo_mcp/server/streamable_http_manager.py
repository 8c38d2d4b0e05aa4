"""StreamableHTTP Session Manager: routes each HTTP request to its session."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from http import HTTPStatus
from uuid import uuid4

import anyio
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.types import Receive, Scope, Send

import todo_mcp.types as types
from todo_mcp.server.models import InitializationOptions
from todo_mcp.server.session import InitializationState, ServerSession
from todo_mcp.server.session_registry import SessionRegistry
from todo_mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from todo_mcp.server.tools import ToolManager
from todo_mcp.server.transport_security import TransportSecurityMiddleware, TransportSecuritySettings

logger = logging.getLogger(__name__)

NO_VALID_SESSION_MESSAGE = "Bad request: No valid session ID provided"
INVALID_SESSION_MESSAGE = "Invalid or Missing session ID"


class StreamableHTTPSessionManager:
    """
    Manages StreamableHTTP sessions for one server process.

    For every request on the MCP endpoint the manager:

    1. Applies transport security (Content-Type, Host and Origin checks)
    2. Resolves the session from the mcp-session-id header
    3. Creates a new session for an initialize request that carries no header
    4. Rejects everything else without dispatching it

    The todo server builds one manager per app; see ``run()`` for its lifetime.

    Args:
        tool_manager: The shared, read-only operation registry
        init_options: Server identity and capabilities announced on initialize
        registry: Session table; a private one is created when omitted
        json_response: Whether to use JSON responses instead of SSE streams
        security_settings: DNS rebinding protection settings
        before_post: Optional hook awaited once per inbound POST, before routing.
                     If it raises, the request is answered with 503.
    """

    def __init__(
        self,
        tool_manager: ToolManager,
        init_options: InitializationOptions,
        registry: SessionRegistry | None = None,
        json_response: bool = False,
        security_settings: TransportSecuritySettings | None = None,
        before_post: Callable[[], Awaitable[None]] | None = None,
    ):
        self.tool_manager = tool_manager
        self.init_options = init_options
        self.registry = registry if registry is not None else SessionRegistry()
        self.json_response = json_response
        self.security = TransportSecurityMiddleware(security_settings)
        self.before_post = before_post

        self._running = False
        # Thread-safe tracking of run() calls
        self._run_lock = anyio.Lock()
        self._has_started = False

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """Accept requests for the lifetime of this context.

        Meant for the Starlette lifespan. An instance runs once; leaving the
        context terminates every registered session, and a second ``run()``
        raises RuntimeError.
        """
        async with self._run_lock:
            if self._has_started:
                raise RuntimeError(
                    "StreamableHTTPSessionManager .run() can only be called "
                    "once per instance. Create a new instance if you need to run again."
                )
            self._has_started = True

        self._running = True
        logger.info("StreamableHTTP session manager started")
        try:
            yield  # Let the application run
        finally:
            logger.info("StreamableHTTP session manager shutting down")
            self._running = False
            with anyio.CancelScope(shield=True):
                for transport in self.registry.transports():
                    await transport.terminate()

    async def handle_request(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """ASGI entry point for the MCP endpoint."""
        if not self._running:
            raise RuntimeError("Session manager is not running. Make sure to use run().")

        request = Request(scope, receive)
        is_post = request.method == "POST"

        # Security runs before any session is looked up
        if error_response := await self.security.validate_request(request, is_post=is_post):
            await error_response(scope, receive, send)
            return

        if is_post:
            await self._handle_post_request(request, send)
        elif request.method in ("GET", "DELETE"):
            await self._handle_session_request(request, send)
        else:
            response = Response(
                "Method Not Allowed",
                status_code=HTTPStatus.METHOD_NOT_ALLOWED,
                headers={"Allow": "GET, POST, DELETE"},
            )
            await response(scope, receive, send)

    async def _handle_post_request(self, request: Request, send: Send) -> None:
        """Reuse, create or reject, based on the session header and the body."""
        if self.before_post is not None:
            try:
                await self.before_post()
            except Exception:
                logger.exception("Pre-request check failed")
                await self._send_error(
                    request,
                    send,
                    HTTPStatus.SERVICE_UNAVAILABLE,
                    types.INTERNAL_ERROR,
                    "Service unavailable: backing store is not reachable",
                )
                return

        try:
            body = await request.json()
        except ValueError as e:
            await self._send_error(request, send, HTTPStatus.BAD_REQUEST, types.PARSE_ERROR, f"Parse error: {e}")
            return

        request_mcp_session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        # Existing session case
        transport = self.registry.lookup(request_mcp_session_id)
        if transport is not None:
            logger.debug("Session already exists, handling request directly")
            await transport.handle_request(request, send)
            return

        # New session case
        if request_mcp_session_id is None and types.is_initialize_request(body):
            transport = self._create_session()
            await transport.handle_request(request, send)
            if transport.session.initialization_state is InitializationState.NotInitialized:
                # The transport refused the exchange (e.g. Accept header), so nothing is using this session
                logger.info(f"Discarding session {transport.mcp_session_id}: initialize was not processed")
                await transport.terminate()
            return

        logger.debug(f"Rejecting POST without a valid session (session ID: {request_mcp_session_id!r})")
        await self._send_error(request, send, HTTPStatus.BAD_REQUEST, types.BAD_REQUEST, NO_VALID_SESSION_MESSAGE)

    async def _handle_session_request(self, request: Request, send: Send) -> None:
        """GET (standalone stream) and DELETE (termination) require a live session."""
        transport = self.registry.lookup(request.headers.get(MCP_SESSION_ID_HEADER))
        if transport is None:
            response = PlainTextResponse(INVALID_SESSION_MESSAGE, status_code=HTTPStatus.BAD_REQUEST)
            await response(request.scope, request.receive, send)
            return

        await transport.handle_request(request, send)

    def _create_session(self) -> StreamableHTTPServerTransport:
        """Allocate an ID, bind a fresh protocol engine to a transport, and register it.

        Nothing in here awaits, so no other request can observe a half-registered session.
        """
        new_session_id = uuid4().hex
        while new_session_id in self.registry:
            new_session_id = uuid4().hex

        session = ServerSession(self.tool_manager, self.init_options, session_id=new_session_id)
        http_transport = StreamableHTTPServerTransport(
            session=session,
            mcp_session_id=new_session_id,
            is_json_response_enabled=self.json_response,
        )
        http_transport.on_close(lambda: self.registry.unregister(new_session_id))

        self.registry.register(new_session_id, http_transport)
        logger.info(f"Created new transport with session ID: {new_session_id}")
        return http_transport

    async def _send_error(
        self,
        request: Request,
        send: Send,
        status_code: HTTPStatus,
        error_code: int,
        message: str,
    ) -> None:
        error = types.JSONRPCError(jsonrpc="2.0", id=None, error=types.ErrorData(code=error_code, message=message))
        response = JSONResponse(types.serialize_message(error), status_code=status_code)
        await response(request.scope, request.receive, send)


class StreamableHTTPASGIApp:
    """
    ASGI application for Streamable HTTP server transport.
    """

    def __init__(self, session_manager: StreamableHTTPSessionManager):
        self.session_manager = session_manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.session_manager.handle_request(scope, receive, send)
