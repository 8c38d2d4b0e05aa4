"""
Streamable HTTP Transport Module

This module implements the server side of the MCP Streamable HTTP transport
(protocol revision 2025-03-26 and later) for a single session.

- POST carries one JSON-RPC message or a batch. Requests are answered either
  with a JSON body or with an SSE stream of ``message`` events.
- GET opens the standalone SSE stream used for server-to-client messages.
- DELETE terminates the session.
"""

import inspect
import json
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from http import HTTPStatus
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectSendStream
from sse_starlette import EventSourceResponse
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import Send

import todo_mcp.types as types
from todo_mcp.server.session import ServerSession

logger = logging.getLogger(__name__)

# Header names
MCP_SESSION_ID_HEADER = "mcp-session-id"
MCP_PROTOCOL_VERSION_HEADER = "mcp-protocol-version"

# Content types
CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_SSE = "text/event-stream"

# Session ID validation pattern (visible ASCII characters ranging from 0x21 to 0x7E)
SESSION_ID_PATTERN = re.compile(r"^[\x21-\x7E]+$")

CloseCallback = Callable[[], Awaitable[None] | None]


class StreamableHTTPServerTransport:
    """
    HTTP server transport for one MCP session.

    The transport owns the HTTP framing for its session: header checks, body
    decoding, and the JSON or SSE response shape. Protocol decisions are left to
    the bound ServerSession. Once terminated, every further request is answered
    with 404 and the registered close callbacks have run exactly once.

    A GET opens the session's standalone SSE stream. The todo tools never write
    to it; ``send_message`` is the hook for server-initiated messages such as
    notifications, and drops them while no client is listening.
    """

    def __init__(
        self,
        session: ServerSession,
        mcp_session_id: str | None,
        is_json_response_enabled: bool = False,
    ) -> None:
        """
        Initialize a new StreamableHTTP server transport.

        Args:
            session: Protocol engine that answers this session's messages.
            mcp_session_id: Session identifier echoed in the mcp-session-id header.
                            None disables session checks.
            is_json_response_enabled: If True, answer requests with a JSON body
                                      instead of an SSE stream.

        Raises:
            ValueError: If the session ID contains invalid characters.
        """
        if mcp_session_id is not None and not SESSION_ID_PATTERN.fullmatch(mcp_session_id):
            raise ValueError("Session ID must only contain visible ASCII characters (0x21-0x7E)")

        self._session = session
        self.mcp_session_id = mcp_session_id
        self.is_json_response_enabled = is_json_response_enabled
        self._standalone_stream: MemoryObjectSendStream[dict[str, Any]] | None = None
        self._close_callbacks: list[CloseCallback] = []
        self._terminated = False

    @property
    def session(self) -> ServerSession:
        return self._session

    @property
    def is_terminated(self) -> bool:
        """Check if this transport has been explicitly terminated."""
        return self._terminated

    def on_close(self, callback: CloseCallback) -> None:
        """Register a callback to run once when the session terminates."""
        self._close_callbacks.append(callback)

    def _create_error_response(
        self,
        error_message: str,
        status_code: HTTPStatus,
        error_code: int = types.INVALID_REQUEST,
        headers: dict[str, str] | None = None,
    ) -> Response:
        """Create an error response with a JSON-RPC error body."""
        error = types.JSONRPCError(
            jsonrpc="2.0",
            id=None,
            error=types.ErrorData(code=error_code, message=error_message),
        )
        return JSONResponse(types.serialize_message(error), status_code=status_code, headers=headers)

    def _response_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.mcp_session_id:
            headers[MCP_SESSION_ID_HEADER] = self.mcp_session_id
        return headers

    async def handle_request(self, request: Request, send: Send) -> None:
        """Application entry point that handles all HTTP requests for this session.

        The request may already have had its body read by the caller; starlette
        caches it on the Request object.
        """
        if self._terminated:
            response = self._create_error_response(
                "Not Found: Session has been terminated",
                HTTPStatus.NOT_FOUND,
            )
            await response(request.scope, request.receive, send)
            return

        if request.method == "POST":
            await self._handle_post_request(request, send)
        elif request.method == "GET":
            await self._handle_get_request(request, send)
        elif request.method == "DELETE":
            await self._handle_delete_request(request, send)
        else:
            response = self._create_error_response(
                "Method Not Allowed",
                HTTPStatus.METHOD_NOT_ALLOWED,
                headers={"Allow": "GET, POST, DELETE"},
            )
            await response(request.scope, request.receive, send)

    def _check_accept_headers(self, request: Request) -> tuple[bool, bool]:
        """Check if the request accepts the required media types."""
        accept_header = request.headers.get("accept", "")
        accept_types = [media_type.split(";")[0].strip().lower() for media_type in accept_header.split(",")]

        has_wildcard = "*/*" in accept_types
        has_json = has_wildcard or any(t in (CONTENT_TYPE_JSON, "application/*") for t in accept_types)
        has_sse = has_wildcard or any(t in (CONTENT_TYPE_SSE, "text/*") for t in accept_types)

        return has_json, has_sse

    def _validate_session(self, request: Request) -> Response | None:
        """Check the mcp-session-id header against this transport's session."""
        if not self.mcp_session_id:
            return None

        request_session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        if request_session_id is None:
            return self._create_error_response("Bad Request: Missing session ID", HTTPStatus.BAD_REQUEST)
        if request_session_id != self.mcp_session_id:
            return self._create_error_response("Not Found: Invalid or expired session ID", HTTPStatus.NOT_FOUND)
        return None

    def _validate_protocol_version(self, request: Request) -> Response | None:
        """Check the mcp-protocol-version header, when the client sends one."""
        protocol_version = request.headers.get(MCP_PROTOCOL_VERSION_HEADER, types.DEFAULT_NEGOTIATED_VERSION)
        if protocol_version not in types.SUPPORTED_PROTOCOL_VERSIONS:
            supported_versions = ", ".join(types.SUPPORTED_PROTOCOL_VERSIONS)
            return self._create_error_response(
                f"Bad Request: Unsupported protocol version: {protocol_version}. "
                f"Supported versions: {supported_versions}",
                HTTPStatus.BAD_REQUEST,
            )
        return None

    def _validate_request_headers(self, request: Request) -> Response | None:
        return self._validate_session(request) or self._validate_protocol_version(request)

    async def _handle_post_request(self, request: Request, send: Send) -> None:
        """Handle POST requests containing JSON-RPC messages."""
        has_json, has_sse = self._check_accept_headers(request)
        if not has_json or not (has_sse or self.is_json_response_enabled):
            if self.is_json_response_enabled:
                wanted = CONTENT_TYPE_JSON
            else:
                wanted = f"both {CONTENT_TYPE_JSON} and {CONTENT_TYPE_SSE}"
            response = self._create_error_response(
                f"Not Acceptable: Client must accept {wanted}",
                HTTPStatus.NOT_ACCEPTABLE,
            )
            await response(request.scope, request.receive, send)
            return

        try:
            body = await request.json()
        except ValueError as e:
            response = self._create_error_response(
                f"Parse error: {e}",
                HTTPStatus.BAD_REQUEST,
                types.PARSE_ERROR,
            )
            await response(request.scope, request.receive, send)
            return

        is_batch = isinstance(body, list)
        raw_messages: list[Any] = body if is_batch else [body]
        try:
            if not raw_messages:
                raise ValueError("Empty batch")
            messages = [types.parse_message(raw) for raw in raw_messages]
        except ValueError as e:
            response = self._create_error_response(
                f"Validation error: {e}",
                HTTPStatus.BAD_REQUEST,
                types.INVALID_REQUEST,
            )
            await response(request.scope, request.receive, send)
            return

        is_initialization_request = any(
            isinstance(message, types.JSONRPCRequest) and message.method == "initialize" for message in messages
        )
        if is_initialization_request:
            if len(messages) > 1:
                response = self._create_error_response(
                    "Invalid Request: Only one initialization request is allowed",
                    HTTPStatus.BAD_REQUEST,
                )
                await response(request.scope, request.receive, send)
                return
        elif error_response := self._validate_request_headers(request):
            await error_response(request.scope, request.receive, send)
            return

        if not any(isinstance(message, types.JSONRPCRequest) for message in messages):
            # Notifications and responses only: acknowledge without a body
            for message in messages:
                await self._session.handle_message(message)
            response = Response(status_code=HTTPStatus.ACCEPTED, headers=self._response_headers())
            await response(request.scope, request.receive, send)
            return

        if self.is_json_response_enabled:
            results = [types.serialize_message(reply) async for reply in self._dispatch(messages)]
            response = JSONResponse(
                results if is_batch else results[0],
                status_code=HTTPStatus.OK,
                headers=self._response_headers(),
            )
        else:
            response = EventSourceResponse(
                self._sse_events(messages),
                headers=self._response_headers(),
            )
        await response(request.scope, request.receive, send)

    async def _dispatch(
        self, messages: list[types.JSONRPCMessage]
    ) -> AsyncIterator[types.JSONRPCResponse | types.JSONRPCError]:
        # Messages within one POST are handled in order
        for message in messages:
            reply = await self._session.handle_message(message)
            if reply is not None:
                yield reply

    async def _sse_events(self, messages: list[types.JSONRPCMessage]) -> AsyncIterator[dict[str, str]]:
        async for reply in self._dispatch(messages):
            yield {"event": "message", "data": json.dumps(types.serialize_message(reply))}

    async def _handle_get_request(self, request: Request, send: Send) -> None:
        """
        Handle GET request to establish SSE.

        This allows the server to communicate to the client without the client
        first sending data via HTTP POST. The server can send JSON-RPC requests
        and notifications on this stream.
        """
        _, has_sse = self._check_accept_headers(request)
        if not has_sse:
            response = self._create_error_response(
                "Not Acceptable: Client must accept text/event-stream",
                HTTPStatus.NOT_ACCEPTABLE,
            )
            await response(request.scope, request.receive, send)
            return

        if error_response := self._validate_request_headers(request):
            await error_response(request.scope, request.receive, send)
            return

        if self._standalone_stream is not None:
            response = self._create_error_response(
                "Conflict: Only one SSE stream is allowed per session",
                HTTPStatus.CONFLICT,
            )
            await response(request.scope, request.receive, send)
            return

        writer, reader = anyio.create_memory_object_stream[dict[str, Any]](max_buffer_size=16)
        self._standalone_stream = writer

        async def standalone_events() -> AsyncIterator[dict[str, str]]:
            async with reader:
                async for payload in reader:
                    yield {"event": "message", "data": json.dumps(payload)}

        logger.debug(f"Opened standalone SSE stream for session {self.mcp_session_id}")
        try:
            response = EventSourceResponse(standalone_events(), headers=self._response_headers())
            await response(request.scope, request.receive, send)
        finally:
            if self._standalone_stream is writer:
                self._standalone_stream = None
            await writer.aclose()
            logger.debug(f"Closed standalone SSE stream for session {self.mcp_session_id}")

    async def send_message(self, message: types.JSONRPCMessage) -> bool:
        """Push a server-initiated message onto the standalone SSE stream.

        Returns False when no client is listening; the message is dropped.
        """
        stream = self._standalone_stream
        if stream is None:
            logger.debug(f"No standalone SSE stream for session {self.mcp_session_id}, dropping message")
            return False
        try:
            await stream.send(types.serialize_message(message))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            return False
        return True

    async def _handle_delete_request(self, request: Request, send: Send) -> None:
        """Handle DELETE requests for explicit session termination."""
        if error_response := self._validate_request_headers(request):
            await error_response(request.scope, request.receive, send)
            return

        await self.terminate()

        response = Response(status_code=HTTPStatus.OK)
        await response(request.scope, request.receive, send)

    async def terminate(self) -> None:
        """Terminate the current session, closing all streams.

        Once terminated, all requests with this session ID will receive 404 Not Found.
        """
        if self._terminated:
            return
        self._terminated = True
        logger.info(f"Terminating session: {self.mcp_session_id}")

        if self._standalone_stream is not None:
            await self._standalone_stream.aclose()
            self._standalone_stream = None

        for callback in self._close_callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Close callback failed for session {self.mcp_session_id}")
