"""Custom exceptions for the todo MCP server."""


class TodoMCPError(Exception):
    """Base error for the todo MCP server."""


class ValidationError(TodoMCPError):
    """Error in validating tool arguments.

    Surfaced to the client as a JSON-RPC invalid params error; the tool
    function is never invoked.
    """

    def __init__(self, message: str, errors: list[dict[str, object]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class ToolError(TodoMCPError):
    """Error in tool operations."""


class UnknownToolError(ToolError):
    """No tool is registered under the requested name."""


class InvalidSignature(Exception):
    """Invalid signature for use as a tool function."""
