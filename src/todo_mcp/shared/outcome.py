"""Tagged results returned by operation handlers.

Handlers report business misses and storage failures as values rather than
exceptions. The protocol layer maps each variant to a response shape:

- ``Ok(value)``: the operation succeeded.
- ``NotFound(query)``: no record matched the lookup text.
- ``StorageFailure(context, cause)``: the data store raised.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        return Ok(fn(self.value))


@dataclass(frozen=True)
class NotFound:
    query: str

    @property
    def message(self) -> str:
        return f"No todo found with title similar to {self.query}"

    def map(self, fn: Callable[[Any], Any]) -> NotFound:
        return self


@dataclass(frozen=True)
class StorageFailure:
    context: str
    cause: str

    @property
    def message(self) -> str:
        return f"{self.context}: {self.cause}"

    def map(self, fn: Callable[[Any], Any]) -> StorageFailure:
        return self


Outcome = Union[Ok[T], NotFound, StorageFailure]
