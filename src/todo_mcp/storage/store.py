"""Statement-level access to the ``Todo`` table.

Every method runs in its own session and returns detached ``TodoRecord``
values, so callers never hold ORM objects across awaits. Errors from the
driver propagate as ``sqlalchemy.exc.SQLAlchemyError``.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, Text, delete, literal, select, update
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import FunctionElement

from todo_mcp.storage.database import SQLITE_LOWER_FUNCTION, Database
from todo_mcp.storage.models import Todo, TodoRecord

LIKE_ESCAPE = "\\"


class unicode_lower(FunctionElement[str]):
    """``lower()`` that folds non-ASCII letters on every backend."""

    type = Text()
    inherit_cache = True


@compiles(unicode_lower)
def _compile_lower(element: unicode_lower, compiler: Any, **kw: Any) -> str:
    return f"lower({compiler.process(element.clauses, **kw)})"


@compiles(unicode_lower, "sqlite")
def _compile_sqlite_lower(element: unicode_lower, compiler: Any, **kw: Any) -> str:
    # registered on each connection by Database
    return f"{SQLITE_LOWER_FUNCTION}({compiler.process(element.clauses, **kw)})"


def title_contains(fragment: str) -> ColumnElement[bool]:
    """Case-insensitive substring match on the title, with LIKE wildcards taken literally."""
    escaped = (
        fragment.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return unicode_lower(Todo.title).like(unicode_lower(literal(f"%{escaped}%")), escape=LIKE_ESCAPE)


class TodoStore:
    def __init__(self, database: Database) -> None:
        self.database = database

    async def insert(self, title: str, is_completed: bool = False) -> TodoRecord:
        async with self.database.session() as session:
            todo = Todo(title=title, is_completed=is_completed)
            session.add(todo)
            await session.commit()
            return TodoRecord.from_row(todo)

    async def select_where(self, *criteria: ColumnElement[bool], limit: int | None = None) -> list[TodoRecord]:
        """Rows matching all criteria, in the database's default order."""
        stmt = select(Todo)
        if criteria:
            stmt = stmt.where(*criteria)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.database.session() as session:
            rows = (await session.scalars(stmt)).all()
            return [TodoRecord.from_row(row) for row in rows]

    async def update_where(self, *criteria: ColumnElement[bool], **patch: Any) -> list[TodoRecord]:
        """Apply ``patch`` (ORM attribute names) to every matching row and return the updated rows."""
        if not criteria:
            raise ValueError("update_where requires at least one criterion")
        stmt = update(Todo).where(*criteria).values(**patch).returning(Todo)
        async with self.database.session() as session:
            rows = (await session.scalars(stmt)).all()
            records = [TodoRecord.from_row(row) for row in rows]
            await session.commit()
            return records

    async def delete_where(self, *criteria: ColumnElement[bool]) -> list[TodoRecord]:
        """Delete every matching row and return what was removed."""
        if not criteria:
            raise ValueError("delete_where requires at least one criterion")
        stmt = delete(Todo).where(*criteria).returning(Todo)
        async with self.database.session() as session:
            rows = (await session.scalars(stmt)).all()
            records = [TodoRecord.from_row(row) for row in rows]
            await session.commit()
            return records
