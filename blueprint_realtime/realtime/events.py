"""
Internal Event Endpoint
=======================

Lets other backend services push a server-to-client event into a user
or conversation room through the HTTP-to-Gateway bridge.

Guarded by the X-Internal-Secret header; the endpoint is disabled (503)
until INTERNAL_SHARED_SECRET is configured.
"""

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from ..config import Settings, get_settings
from ..models import InternalEventPayload
from . import bridge

logger = logging.getLogger("blueprint_realtime.realtime.events")

internal_router = APIRouter(tags=["Internal APIs"])


@internal_router.post("/internal/events")
async def publish_event(
    request: Request,
    event: InternalEventPayload,
    x_internal_secret: Optional[str] = Header(None, alias="X-Internal-Secret"),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """
    Receive an event from a backend service and emit it to a room.

    Returns:
        Acknowledgment with the number of connections reached

    Raises:
        HTTPException: 401 if the secret is missing or invalid,
            503 if internal events are not configured or the gateway is down
    """
    if not settings.INTERNAL_SHARED_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal events are not configured"
        )

    if not x_internal_secret or not hmac.compare_digest(x_internal_secret, settings.INTERNAL_SHARED_SECRET):
        logger.warning(
            "Internal event rejected: invalid or missing X-Internal-Secret header",
            extra={"path": request.url.path}
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid or missing X-Internal-Secret header"
        )

    try:
        if event.target == "user":
            recipients = await bridge.emit_to_user(event.targetId, event.type, event.data)
        else:
            recipients = await bridge.emit_to_conversation(event.targetId, event.type, event.data)
    except bridge.GatewayNotInitializedError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    logger.info(
        "Published internal event",
        extra={
            "event_type": event.type,
            "target": event.target,
            "target_id": event.targetId,
            "recipients": recipients
        }
    )

    return {
        "status": "received",
        "type": event.type,
        "target": event.target,
        "targetId": event.targetId,
        "recipients": recipients
    }


__all__ = ["internal_router"]
