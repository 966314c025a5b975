"""
Server-Sent Events connection registry.

One registry is created per application lifespan and handed to whoever needs
to push to users (the notification dispatcher and the SSE endpoint). A user
may hold several connections at once, one per open browser tab.
"""

import asyncio
import json
import logging
from asyncio import Queue
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Set

from servicedesk.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class SSEConnection:
    """Represents a single SSE connection."""
    user_id: int
    queue: Queue = field(default_factory=lambda: Queue(maxsize=settings.SSE_QUEUE_MAXSIZE))
    connected_at: datetime = field(default_factory=datetime.utcnow)

    def __hash__(self):
        return hash(id(self))

    def __eq__(self, other):
        return id(self) == id(other)


class ConnectionRegistry:
    """Tracks live SSE connections keyed by user id."""

    def __init__(self):
        self._user_connections: Dict[int, Set[SSEConnection]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: int) -> SSEConnection:
        connection = SSEConnection(user_id=user_id)

        async with self._lock:
            self._user_connections.setdefault(user_id, set()).add(connection)

        logger.info(
            f"SSE connection established: user={user_id}, "
            f"total_connections={self.connection_count}"
        )
        return connection

    async def disconnect(self, connection: SSEConnection):
        async with self._lock:
            connections = self._user_connections.get(connection.user_id)
            if connections is not None:
                connections.discard(connection)
                if not connections:
                    del self._user_connections[connection.user_id]

        logger.info(
            f"SSE connection closed: user={connection.user_id}, "
            f"total_connections={self.connection_count}"
        )

    async def publish(self, user_id: int, payload: Dict[str, Any], event_type: str = "notification") -> int:
        """
        Push ``payload`` to every open connection of ``user_id``.

        Best effort: a user without connections is skipped and a failing
        connection is logged. Returns the number of connections reached.
        """
        connections = list(self._user_connections.get(user_id, ()))
        if not connections:
            logger.debug(f"No connections for user {user_id}")
            return 0

        message = self._format_sse_message(event_type, payload)
        delivered = 0
        for conn in connections:
            try:
                conn.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"SSE queue full for user {user_id}, dropping {event_type}")

        logger.debug(f"Sent to user {user_id}: event={event_type}, connections={delivered}")
        return delivered

    def _format_sse_message(self, event_type: str, data: Any) -> str:
        """
        Format a message according to SSE specification.

        SSE format:
        event: event_type
        data: json_data

        """
        json_data = json.dumps(data, default=str)
        return f"event: {event_type}\ndata: {json_data}\n\n"

    @property
    def connection_count(self) -> int:
        return sum(len(conns) for conns in self._user_connections.values())

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        return {
            "total_connections": self.connection_count,
            "users": len(self._user_connections),
        }
