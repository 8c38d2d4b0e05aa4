from .server import Settings, TodoServer
from .shared.exceptions import McpError
from .shared.outcome import NotFound, Ok, Outcome, StorageFailure

__all__ = ["McpError", "NotFound", "Ok", "Outcome", "Settings", "StorageFailure", "TodoServer"]
