from .database import Database
from .models import Base, Todo, TodoRecord
from .store import TodoStore, title_contains

__all__ = ["Base", "Database", "Todo", "TodoRecord", "TodoStore", "title_contains"]
