"""
This module provides simpler types to use with the server for managing sessions.
"""

from typing import Any

from pydantic import BaseModel, Field


class InitializationOptions(BaseModel):
    server_name: str
    server_version: str
    capabilities: dict[str, Any] = Field(default_factory=lambda: {"tools": {"listChanged": False}})
    instructions: str | None = None
