"""Process-wide table of live Streamable HTTP sessions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from todo_mcp.server.streamable_http import StreamableHTTPServerTransport

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Maps session IDs to the transport that owns each session.

    One instance is created per application and handed to the session manager;
    each transport's close callback removes its own entry. None of the methods
    await, so a lookup followed by a mutation for the same key can never be
    interleaved with another request on the event loop.
    """

    def __init__(self) -> None:
        self._transports: dict[str, StreamableHTTPServerTransport] = {}

    def register(self, session_id: str, transport: StreamableHTTPServerTransport) -> None:
        if session_id in self._transports:
            raise ValueError(f"Session {session_id} is already registered")
        self._transports[session_id] = transport
        logger.debug(f"Registered session {session_id} ({len(self._transports)} active)")

    def lookup(self, session_id: str | None) -> StreamableHTTPServerTransport | None:
        if session_id is None:
            return None
        return self._transports.get(session_id)

    def unregister(self, session_id: str) -> None:
        """Remove a session. Unknown IDs are ignored."""
        if self._transports.pop(session_id, None) is not None:
            logger.debug(f"Unregistered session {session_id} ({len(self._transports)} active)")

    def transports(self) -> list[StreamableHTTPServerTransport]:
        """Snapshot of the live transports, safe to iterate while sessions close."""
        return list(self._transports.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._transports

    def __len__(self) -> int:
        return len(self._transports)
