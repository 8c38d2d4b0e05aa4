"""
Todo operation handlers.

Each handler performs one logical database operation and reports the result as
an outcome value. Title lookups are case-insensitive substring matches; when
several rows match, only the first one in the database's default order is
touched.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from todo_mcp.server.utilities.logging import get_logger
from todo_mcp.shared.outcome import NotFound, Ok, Outcome, StorageFailure
from todo_mcp.storage import Todo, TodoRecord, TodoStore, title_contains

logger = get_logger(__name__)


class TodoHandlers:
    def __init__(self, store: TodoStore) -> None:
        self.store = store

    async def create(self, title: str, is_completed: bool = False) -> Outcome[TodoRecord]:
        try:
            record = await self.store.insert(title, is_completed)
        except SQLAlchemyError as e:
            return _storage_failure("Failed to save todo", e)
        logger.info(f"Created todo {record.id}")
        return Ok(record)

    async def list_all(self) -> Outcome[list[TodoRecord]]:
        try:
            records = await self.store.select_where()
        except SQLAlchemyError as e:
            return _storage_failure("Something went wrong while fetching todos", e)
        return Ok(records)

    async def update_title(self, existing_title: str, new_title: str) -> Outcome[TodoRecord]:
        return await self._update_first(existing_title, "Error updating todo", title=new_title)

    async def update_status(self, title: str, is_completed: bool) -> Outcome[TodoRecord]:
        return await self._update_first(title, "Failed to update todo", is_completed=is_completed)

    async def delete(self, title: str) -> Outcome[TodoRecord]:
        try:
            target = await self._first_match(title)
            if target is None:
                return NotFound(title)
            deleted = await self.store.delete_where(Todo.id == target.id)
        except SQLAlchemyError as e:
            return _storage_failure("Error while deleting todo", e)
        if not deleted:
            return NotFound(title)
        logger.info(f"Deleted todo {deleted[0].id}")
        return Ok(deleted[0])

    async def _update_first(self, fragment: str, context: str, **patch: Any) -> Outcome[TodoRecord]:
        """Apply ``patch`` to the first todo whose title contains ``fragment``."""
        try:
            target = await self._first_match(fragment)
            if target is None:
                return NotFound(fragment)
            updated = await self.store.update_where(Todo.id == target.id, **patch)
        except SQLAlchemyError as e:
            return _storage_failure(context, e)
        # The row can disappear between the lookup and the update
        if not updated:
            return NotFound(fragment)
        return Ok(updated[0])

    async def _first_match(self, fragment: str) -> TodoRecord | None:
        matches = await self.store.select_where(title_contains(fragment), limit=1)
        return matches[0] if matches else None


def _storage_failure(context: str, error: SQLAlchemyError) -> StorageFailure:
    logger.exception(context)
    return StorageFailure(context=context, cause=str(error))
