"""
WebSocket Endpoint for Real-time Messaging
==========================================

Authentication:
    - Query parameter: /realtime/ws?token=YOUR_JWT
    - OR Authorization header: "Bearer YOUR_JWT"
    - OR, with neither, an authenticate event after connecting

An invalid handshake credential is refused with close code 1008 before
the socket is accepted.

Frames (both directions):
    {"type": "<event>", "data": <payload>}

Server-only frames:
    - {"type": "connected", "data": {"connectionId", "user", "timestamp"}}
    - {"type": "ping", "data": {"timestamp": "..."}}
    - {"type": "error", "data": {"message": "..."}}
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status

from ..auth.session import CredentialError, extract_token_from_header, get_current_identity
from ..models import Identity, utcnow
from .connections import Connection
from .gateway import RealtimeGateway
from .protocol import ProtocolError, SocketEvents, parse_envelope

logger = logging.getLogger("blueprint_realtime.realtime.ws")

realtime_router = APIRouter()


def require_gateway(request: Request) -> RealtimeGateway:
    """Dependency returning the running gateway, 503 before startup."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Realtime gateway not running"
        )
    return gateway


def _handshake_credential(token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if token:
        return token
    if authorization:
        return extract_token_from_header(authorization)
    return None


async def handle_ping_pong(gateway: RealtimeGateway, connection: Connection, interval: float) -> None:
    """
    Send periodic ping frames to keep the connection alive.

    Stops when a send fails; the receive loop notices the disconnect.
    """
    try:
        while True:
            await asyncio.sleep(interval)
            sent = await gateway.manager.send(connection, SocketEvents.PING, {"timestamp": utcnow().isoformat()})
            if not sent:
                break
    except asyncio.CancelledError:
        pass


@realtime_router.websocket("/ws")
async def websocket_endpoint(
        websocket: WebSocket,
        token: Optional[str] = Query(None),
        authorization: Optional[str] = Header(None)
):
    """WebSocket endpoint for the real-time messaging protocol."""
    gateway: Optional[RealtimeGateway] = getattr(websocket.app.state, "gateway", None)
    if gateway is None:
        logger.error("WebSocket connection attempted before gateway startup")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Server not ready")
        return

    identity: Optional[Identity] = None
    try:
        credential = _handshake_credential(token, authorization)
        if credential:
            identity = gateway.verify(credential)
    except CredentialError as e:
        logger.warning(f"WebSocket connection attempted with invalid token: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication failed")
        return

    await websocket.accept()
    connection = await gateway.open_connection(websocket, identity)

    ping_task = asyncio.create_task(
        handle_ping_pong(gateway, connection, gateway.settings.WS_PING_INTERVAL_SECONDS)
    )

    try:
        while True:
            raw = await websocket.receive_text()

            try:
                event, data = parse_envelope(json.loads(raw))
            except json.JSONDecodeError:
                await gateway.manager.send(connection, SocketEvents.ERROR, {"message": "Invalid JSON"})
                continue
            except ProtocolError as e:
                await gateway.manager.send(connection, SocketEvents.ERROR, {"message": str(e)})
                continue

            await gateway.dispatch(connection, event, data)

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected", extra={"connection_id": connection.id})

    except Exception as e:
        logger.error(f"WebSocket error: {str(e)}", exc_info=True)

    finally:
        ping_task.cancel()
        # cleanup outlives a cancelled endpoint task; the cancellation still propagates
        await asyncio.shield(gateway.schedule_close(connection))


@realtime_router.get("/status")
async def realtime_status(gateway: RealtimeGateway = Depends(require_gateway)) -> Dict[str, Any]:
    """
    Get real-time service status and statistics.

    Returns:
        dict: Connection statistics
    """
    return {
        "status": "ok",
        **gateway.get_stats(),
        "timestamp": utcnow().isoformat()
    }


@realtime_router.get("/presence")
async def get_presence(
    userIds: List[str] = Query(..., description="User identifiers to look up"),
    identity: Identity = Depends(get_current_identity),
    gateway: RealtimeGateway = Depends(require_gateway),
) -> Dict[str, Any]:
    """
    Current presence status of the given users.

    Accepts repeated (?userIds=a&userIds=b) or comma-separated values.
    """
    user_ids = [u.strip() for value in userIds for u in value.split(",") if u.strip()]
    statuses = gateway.presence.get_statuses(user_ids)

    return {
        "statuses": {user_id: user_status.value for user_id, user_status in statuses.items()},
        "timestamp": utcnow().isoformat()
    }


@realtime_router.get("/typing")
async def get_typing_state(
    conversationId: str = Query(..., description="Conversation identifier"),
    identity: Identity = Depends(get_current_identity),
    gateway: RealtimeGateway = Depends(require_gateway),
) -> Dict[str, Any]:
    """
    Query who is currently typing in a conversation.

    Lets clients that missed typing events poll the current state.

    Raises:
        HTTPException: 404 if the conversation is missing or the caller is not a participant
    """
    conversation = await gateway.store.find_by_id(conversationId)
    if conversation is None or not conversation.has_participant(identity.user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found or access denied"
        )

    return {
        "conversationId": conversationId,
        "typingUserIds": gateway.typing.get_typing_users(conversationId)
    }


__all__ = ["realtime_router", "require_gateway"]
