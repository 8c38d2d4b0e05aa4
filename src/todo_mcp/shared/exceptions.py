from todo_mcp.types import ErrorData


class McpError(Exception):
    """Exception carrying a JSON-RPC error that should be returned to the peer.

    Raising it from inside request dispatch turns into an error response with
    the wrapped code and message, instead of a generic internal error.

    Attributes:
        error: The ErrorData object describing the failure
    """

    error: ErrorData

    def __init__(self, error: ErrorData):
        """Initialize McpError with the error data to send.

        Args:
            error: ErrorData object containing the error details
        """
        super().__init__(error.message)
        self.error = error
