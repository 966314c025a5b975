"""
Caller identity and shared request dependencies.

The bearer token is issued upstream; its claims (``sub``, ``role``,
``customer_id``) are trusted as-is and turned into an Actor.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from servicedesk.core.security import decode_access_token
from servicedesk.core.sse import ConnectionRegistry
from servicedesk.models.user import UserRole
from servicedesk.services.access_policy import Actor
from servicedesk.services.notification_queue import NotificationQueue

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def actor_from_token(token: str) -> Optional[Actor]:
    payload = decode_access_token(token)
    if payload is None:
        return None
    try:
        customer_id = payload.get("customer_id")
        return Actor(
            id=int(payload["sub"]),
            role=UserRole(payload["role"]),
            customer_id=int(customer_id) if customer_id is not None else None,
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Token claims rejected: {e}")
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    actor = actor_from_token(credentials.credentials)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def get_notification_queue(request: Request) -> Optional[NotificationQueue]:
    return getattr(request.app.state, "notification_queue", None)


def get_connection_registry(request: Request) -> ConnectionRegistry:
    registry = getattr(request.app.state, "connection_registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Live updates are not available",
        )
    return registry
