"""ORM model for the ``Todo`` table and its wire representation."""

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Todo(Base):
    # Table and column names are shared with existing deployments, hence the camelCase
    __tablename__ = "Todo"
    __table_args__ = (Index("title_idx", "title"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    title: Mapped[str] = mapped_column(Text, nullable=False)
    is_completed: Mapped[bool] = mapped_column("isCompleted", Boolean, nullable=False, default=False)
    created_at: Mapped[datetime | None] = mapped_column("createdAt", DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(
        "updatedAt", DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"Todo(id={self.id!r}, title={self.title!r}, is_completed={self.is_completed!r})"


class TodoRecord(BaseModel):
    """A todo row detached from its database session."""

    id: str
    title: str
    is_completed: bool = Field(alias="isCompleted")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # SQLite hands back naive values for timezone-aware columns; they are stored in UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_row(cls, row: Todo) -> "TodoRecord":
        return cls(
            id=row.id,
            title=row.title,
            is_completed=row.is_completed,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
