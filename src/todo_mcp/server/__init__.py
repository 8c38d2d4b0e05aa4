from .todo_server import Settings, TodoServer

__all__ = ["Settings", "TodoServer"]
