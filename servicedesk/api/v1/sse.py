"""
Server-Sent Events (SSE) API Endpoints.

Streams a user's notifications as they are dispatched.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from servicedesk.api.v1.auth import actor_from_token, get_connection_registry
from servicedesk.core.config import settings
from servicedesk.core.sse import ConnectionRegistry, SSEConnection

logger = logging.getLogger(__name__)

router = APIRouter()


async def event_generator(connection: SSEConnection, heartbeat: float):
    """
    Generate SSE events for a connection.

    Yields events from the connection's queue.
    Sends heartbeat pings to keep connection alive.
    """
    try:
        while True:
            try:
                message = await asyncio.wait_for(connection.queue.get(), timeout=heartbeat)
                yield message
            except asyncio.TimeoutError:
                yield ": ping\n\n"
    except asyncio.CancelledError:
        logger.debug(f"SSE generator cancelled for user {connection.user_id}")
        raise


@router.get("/notifications")
async def stream_notifications(
    token: str = Query(..., description="JWT access token"),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """
    Stream notifications for the authenticated user.

    Authentication is via query parameter 'token' since EventSource
    doesn't support custom headers.

    Example usage:
    ```javascript
    const source = new EventSource('/api/v1/sse/notifications?token=your_jwt_token');
    source.addEventListener('notification', (event) => {
        console.log(JSON.parse(event.data).title);
    });
    ```
    """
    actor = actor_from_token(token)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    connection = await registry.connect(actor.id)

    async def generate():
        try:
            yield f"event: connected\ndata: {json.dumps({'user_id': actor.id})}\n\n"
            async for message in event_generator(connection, settings.SSE_HEARTBEAT_SECONDS):
                yield message
        finally:
            await registry.disconnect(connection)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )
