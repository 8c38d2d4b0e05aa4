from .handlers import TodoHandlers
from .tools import register_todo_tools

__all__ = ["TodoHandlers", "register_todo_tools"]
