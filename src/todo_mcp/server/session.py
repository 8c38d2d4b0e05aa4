"""
ServerSession Module

This module provides the ServerSession class, the per-session protocol engine.
It enforces the initialize handshake and turns each validated JSON-RPC request
into a call against the shared ToolManager, producing the matching response
envelope.

Common usage pattern:
```
    session = ServerSession(tool_manager, init_options, session_id="abc")
    response = await session.handle_message(parse_message(body))
    if response is not None:
        return serialize_message(response)
```

Business failures never escape as exceptions: tool errors and storage failures
come back as a successful `tools/call` result flagged with `isError`.
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel

import todo_mcp.types as types
from todo_mcp.server.exceptions import ToolError, UnknownToolError, ValidationError
from todo_mcp.server.models import InitializationOptions
from todo_mcp.server.tools import ToolManager
from todo_mcp.server.utilities.logging import get_logger
from todo_mcp.shared.exceptions import McpError
from todo_mcp.shared.outcome import NotFound, Ok, StorageFailure

logger = get_logger(__name__)


class InitializationState(Enum):
    NotInitialized = 1
    Initializing = 2
    Initialized = 3


class ServerSession:
    _initialization_state: InitializationState = InitializationState.NotInitialized

    def __init__(
        self,
        tool_manager: ToolManager,
        init_options: InitializationOptions,
        session_id: str | None = None,
    ) -> None:
        self._tool_manager = tool_manager
        self._init_options = init_options
        self._session_id = session_id
        self._initialization_state = InitializationState.NotInitialized

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def initialization_state(self) -> InitializationState:
        return self._initialization_state

    async def handle_message(
        self, message: types.JSONRPCMessage
    ) -> types.JSONRPCResponse | types.JSONRPCError | None:
        """Process one inbound message, returning the response for requests."""
        match message:
            case types.JSONRPCRequest():
                return await self._handle_request(message)
            case types.JSONRPCNotification():
                self._received_notification(message)
                return None
            case _:
                # We never send requests to the client, so any response is unsolicited
                logger.debug(f"Ignoring client response in session {self._session_id}: {message}")
                return None

    async def _handle_request(self, request: types.JSONRPCRequest) -> types.JSONRPCResponse | types.JSONRPCError:
        try:
            result = await self._received_request(request)
        except McpError as err:
            return _error(request.id, err.error)
        except Exception as err:
            logger.exception(f"Unexpected failure handling {request.method} in session {self._session_id}")
            return _error(request.id, types.ErrorData(code=types.INTERNAL_ERROR, message=str(err)))

        return types.JSONRPCResponse(
            jsonrpc="2.0",
            id=request.id,
            result=result.model_dump(by_alias=True, mode="json", exclude_none=True),
        )

    async def _received_request(self, request: types.JSONRPCRequest) -> BaseModel:
        params = request.params or {}
        match request.method:
            case "initialize":
                return self._initialize(params)
            case "ping":
                # Ping requests are allowed at any time
                return types.EmptyResult()
            case _:
                if self._initialization_state != InitializationState.Initialized:
                    raise McpError(
                        types.ErrorData(
                            code=types.INVALID_REQUEST,
                            message="Received request before initialization was complete",
                        )
                    )

        match request.method:
            case "tools/list":
                return types.ListToolsResult(tools=[tool.to_mcp_tool() for tool in self._tool_manager.list_tools()])
            case "tools/call":
                return await self._call_tool(params)
            case _:
                raise McpError(types.ErrorData(code=types.METHOD_NOT_FOUND, message="Method not found"))

    def _initialize(self, params: dict[str, Any]) -> types.InitializeResult:
        if self._initialization_state != InitializationState.NotInitialized:
            raise McpError(types.ErrorData(code=types.INVALID_REQUEST, message="Session is already initialized"))
        try:
            client_params = types.InitializeRequestParams.model_validate(params)
        except ValueError as e:
            raise McpError(
                types.ErrorData(code=types.INVALID_PARAMS, message=f"Invalid initialize parameters: {e}")
            ) from e

        self._initialization_state = InitializationState.Initializing
        logger.info(
            f"Session {self._session_id} initializing for client "
            f"{client_params.clientInfo.name} {client_params.clientInfo.version}"
        )
        return types.InitializeResult(
            protocolVersion=_negotiate_version(client_params.protocolVersion),
            capabilities=self._init_options.capabilities,
            serverInfo=types.Implementation(
                name=self._init_options.server_name,
                version=self._init_options.server_version,
            ),
            instructions=self._init_options.instructions,
        )

    def _received_notification(self, notification: types.JSONRPCNotification) -> None:
        match notification.method:
            case "notifications/initialized":
                if self._initialization_state == InitializationState.Initializing:
                    self._initialization_state = InitializationState.Initialized
                elif self._initialization_state == InitializationState.NotInitialized:
                    logger.warning(f"Session {self._session_id} got initialized notification before initialize")
            case _:
                logger.debug(f"Ignoring notification {notification.method} in session {self._session_id}")

    async def _call_tool(self, params: dict[str, Any]) -> types.CallToolResult:
        name = params.get("name")
        if not isinstance(name, str):
            raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message="Tool name must be a string"))
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message="Tool arguments must be an object"))

        try:
            result = await self._tool_manager.call_tool(name, arguments)
        except UnknownToolError as e:
            raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message=str(e))) from e
        except ValidationError as e:
            raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message=str(e), data=e.errors)) from e
        except ToolError as e:
            logger.exception(f"Tool {name} failed in session {self._session_id}")
            return _text_result(str(e), is_error=True)

        return convert_tool_result(result)


def convert_tool_result(result: Any) -> types.CallToolResult:
    """Map a tool's return value onto a tools/call result."""
    match result:
        case types.CallToolResult():
            return result
        case Ok(value=value):
            return convert_tool_result(value)
        case NotFound() | StorageFailure():
            return _text_result(result.message, is_error=True)
        case str():
            return _text_result(result)
        case BaseModel():
            return _text_result(result.model_dump_json(by_alias=True))
        case list() if all(isinstance(item, BaseModel) for item in result):
            return _text_result(json.dumps([item.model_dump(by_alias=True, mode="json") for item in result]))
        case None:
            return types.CallToolResult(content=[])
        case _:
            return _text_result(json.dumps(result, default=str))


def _text_result(text: str, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)], isError=is_error)


def _error(request_id: types.RequestId, error: types.ErrorData) -> types.JSONRPCError:
    return types.JSONRPCError(jsonrpc="2.0", id=request_id, error=error)


def _negotiate_version(requested: str | int) -> str | int:
    if requested in types.SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return types.LATEST_PROTOCOL_VERSION
