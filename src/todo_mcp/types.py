"""JSON-RPC envelopes and the subset of MCP protocol types served by this package."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

LATEST_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS: list[str] = ["2024-11-05", "2025-03-26", LATEST_PROTOCOL_VERSION]
DEFAULT_NEGOTIATED_VERSION = "2025-03-26"
"""Version assumed when a client omits the mcp-protocol-version header."""

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Implementation-defined server error, used for routing failures
BAD_REQUEST = -32000

RequestId = str | int


class JSONRPCRequest(BaseModel):
    """A request that expects a response."""

    jsonrpc: Literal["2.0"]
    id: RequestId
    method: str
    params: dict[str, Any] | None = None
    model_config = ConfigDict(extra="allow")


class JSONRPCNotification(BaseModel):
    """A notification which does not expect a response."""

    jsonrpc: Literal["2.0"]
    method: str
    params: dict[str, Any] | None = None
    model_config = ConfigDict(extra="allow")


class JSONRPCResponse(BaseModel):
    """A successful (non-error) response to a request."""

    jsonrpc: Literal["2.0"]
    id: RequestId
    result: dict[str, Any]
    model_config = ConfigDict(extra="allow")


class ErrorData(BaseModel):
    """Error information for JSON-RPC error responses."""

    code: int
    """The error type that occurred."""

    message: str
    """
    A short description of the error. The message SHOULD be limited to a concise single
    sentence.
    """

    data: Any | None = None
    """
    Additional information about the error. The value of this member is defined by the
    sender (e.g. detailed error information, nested errors etc.).
    """

    model_config = ConfigDict(extra="allow")


class JSONRPCError(BaseModel):
    """A response to a request that indicates an error occurred."""

    jsonrpc: Literal["2.0"]
    id: RequestId | None
    error: ErrorData
    model_config = ConfigDict(extra="allow")


JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse | JSONRPCError


class EmptyResult(BaseModel):
    """A response that indicates success but carries no data."""

    model_config = ConfigDict(extra="allow")


class Implementation(BaseModel):
    """Describes the name and version of an MCP implementation."""

    name: str
    version: str
    title: str | None = None
    model_config = ConfigDict(extra="allow")


class InitializeRequestParams(BaseModel):
    """Parameters for the initialize request."""

    protocolVersion: str | int
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: Implementation
    model_config = ConfigDict(extra="allow")


class InitializeResult(BaseModel):
    """After receiving an initialize request from the client, the server sends this."""

    protocolVersion: str | int
    capabilities: dict[str, Any]
    serverInfo: Implementation
    instructions: str | None = None
    model_config = ConfigDict(extra="allow")


class ToolAnnotations(BaseModel):
    """
    Additional properties describing a Tool to clients.

    NOTE: all properties in ToolAnnotations are **hints**.
    They are not guaranteed to provide a faithful description of
    tool behavior.
    """

    title: str | None = None
    readOnlyHint: bool | None = None
    destructiveHint: bool | None = None
    idempotentHint: bool | None = None
    openWorldHint: bool | None = None
    model_config = ConfigDict(extra="allow")


class Tool(BaseModel):
    """Definition for a tool the client can call."""

    name: str
    title: str | None = None
    description: str | None = None
    inputSchema: dict[str, Any]
    annotations: ToolAnnotations | None = None
    model_config = ConfigDict(extra="allow")


class ListToolsResult(BaseModel):
    """The server's response to a tools/list request from the client."""

    tools: list[Tool]


class TextContent(BaseModel):
    """Text content for a message."""

    type: Literal["text"] = "text"
    text: str
    model_config = ConfigDict(extra="allow")


class CallToolResult(BaseModel):
    """The server's response to a tool call."""

    content: list[TextContent]
    isError: bool = False


def parse_message(data: Any) -> JSONRPCMessage:
    """Validate a decoded JSON value as a single JSON-RPC message.

    The envelope kind is chosen from the members present, so a request is never
    mistaken for a notification.

    Raises:
        pydantic.ValidationError: if the value is not a well-formed envelope.
        ValueError: if the value is not a JSON object.
    """
    if not isinstance(data, dict):
        raise ValueError("JSON-RPC message must be an object")
    if "method" in data:
        if "id" in data:
            return JSONRPCRequest.model_validate(data)
        return JSONRPCNotification.model_validate(data)
    if "error" in data:
        return JSONRPCError.model_validate(data)
    return JSONRPCResponse.model_validate(data)


def is_initialize_request(data: Any) -> bool:
    """Check whether a decoded body is a single, well-formed initialize request."""
    if not isinstance(data, dict) or data.get("method") != "initialize":
        return False
    try:
        message = parse_message(data)
    except ValueError:
        # pydantic.ValidationError is a ValueError
        return False
    if not isinstance(message, JSONRPCRequest):
        return False
    try:
        InitializeRequestParams.model_validate(message.params or {})
    except ValueError:
        return False
    return True


def serialize_message(message: JSONRPCMessage) -> dict[str, Any]:
    """Dump an envelope to plain JSON-compatible data."""
    data = message.model_dump(by_alias=True, mode="json", exclude_none=True)
    if isinstance(message, JSONRPCError):
        # errors raised before a request id is known carry an explicit null id
        data.setdefault("id", None)
    return data
