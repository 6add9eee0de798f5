"""
Messaging REST Routes
=====================

HTTP counterpart of the socket messaging events. Sends and read receipts
made here are pushed to connected clients through the realtime bridge
with the same dual delivery the gateway uses; when no gateway is running
the request still succeeds.

Response envelope:
    {"success": true, "message": "...", "data": {...}}
"""

import logging
import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status
from pydantic import ValidationError

from ..auth.session import get_current_identity
from ..models import (
    ContentRequest,
    Identity,
    MessageReadData,
    NewMessageData,
    SendMessagePayload,
    validation_message,
)
from ..realtime import bridge
from ..realtime.protocol import SocketEvents
from .service import ConversationAccessError, MessagingError, MessagingService

logger = logging.getLogger("blueprint_realtime.messaging.routes")

router = APIRouter(prefix="/messages", tags=["Messages"])


def get_messaging_service(request: Request) -> MessagingService:
    return request.app.state.messaging


def _success(message: str, data: Optional[Dict[str, Any]] = None, **extra: Any) -> Dict[str, Any]:
    response: Dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        response["data"] = data
    response.update(extra)
    return response


def _http_error(exc: MessagingError) -> HTTPException:
    if isinstance(exc, ConversationAccessError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


# ============================================================================
# Best-effort real-time delivery
# ============================================================================

async def _push_new_message(message_data: NewMessageData, sender_id: str) -> None:
    try:
        await bridge.emit_to_conversation(message_data.conversation.id, SocketEvents.NEW_MESSAGE, message_data)
        for participant_id in message_data.conversation.participant_ids:
            if participant_id != sender_id:
                await bridge.emit_to_user(participant_id, SocketEvents.NEW_MESSAGE, message_data)
    except bridge.GatewayNotInitializedError as e:
        logger.warning(f"Skipping real-time delivery: {e}", extra={"message_id": message_data.message.id})


async def _push_read_receipt(receipt: MessageReadData) -> None:
    try:
        await bridge.emit_to_conversation(receipt.conversation_id, SocketEvents.MESSAGE_READ, receipt)
    except bridge.GatewayNotInitializedError as e:
        logger.warning(f"Skipping real-time delivery: {e}", extra={"message_id": receipt.message_id})


async def _send(
    service: MessagingService,
    identity: Identity,
    content: str,
    conversation_id: Optional[str] = None,
    recipient_id: Optional[str] = None,
) -> Dict[str, Any]:
    try:
        payload = SendMessagePayload(
            conversation_id=conversation_id,
            recipient_id=recipient_id,
            content=content,
        )
        message_data = await service.send_message(identity.user_id, payload)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=validation_message(e))
    except MessagingError as e:
        raise _http_error(e)

    await _push_new_message(message_data, identity.user_id)

    return _success("Message sent successfully", {
        "message": message_data.message.to_wire(),
        "conversation": message_data.conversation.to_wire(),
    })


# ============================================================================
# Routes
# ============================================================================

@router.get("/conversations")
async def get_conversations(
    identity: Identity = Depends(get_current_identity),
    service: MessagingService = Depends(get_messaging_service),
) -> Dict[str, Any]:
    """The caller's conversations, most recently active first."""
    conversations = await service.list_conversations(identity.user_id)
    return _success("Conversations retrieved successfully", {
        "conversations": [c.to_wire() for c in conversations]
    })


@router.get("/conversations/{conversation_id}")
async def get_conversation_messages(
    conversation_id: str = Path(..., min_length=1),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    service: MessagingService = Depends(get_messaging_service),
) -> Dict[str, Any]:
    """
    One page of a conversation's messages, oldest first within the page.

    Raises:
        HTTPException: 404 if the conversation is missing or the caller is not a participant
    """
    try:
        messages, total = await service.list_messages(identity.user_id, conversation_id, page=page, limit=limit)
    except MessagingError as e:
        raise _http_error(e)

    total_pages = math.ceil(total / limit) if total else 0

    return {
        "success": True,
        "message": "Messages retrieved successfully",
        "data": [m.to_wire() for m in messages],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }


@router.post("/conversations/{user_id}", status_code=status.HTTP_201_CREATED)
async def send_message_to_user(
    body: ContentRequest,
    user_id: str = Path(..., min_length=1),
    identity: Identity = Depends(get_current_identity),
    service: MessagingService = Depends(get_messaging_service),
) -> Dict[str, Any]:
    """Start (or reuse) a conversation with a user and send the first message."""
    return await _send(service, identity, body.content, recipient_id=user_id)


@router.post("/{conversation_id}", status_code=status.HTTP_201_CREATED)
async def send_message_to_conversation(
    body: ContentRequest,
    conversation_id: str = Path(..., min_length=1),
    identity: Identity = Depends(get_current_identity),
    service: MessagingService = Depends(get_messaging_service),
) -> Dict[str, Any]:
    """Send a message into an existing conversation."""
    return await _send(service, identity, body.content, conversation_id=conversation_id)


@router.patch("/{message_id}/read")
async def mark_as_read(
    message_id: str = Path(..., min_length=1),
    identity: Identity = Depends(get_current_identity),
    service: MessagingService = Depends(get_messaging_service),
) -> Dict[str, Any]:
    """
    Mark a message as read by the caller.

    Idempotent: a second call succeeds without another read receipt.
    """
    try:
        receipt = await service.mark_as_read(identity.user_id, message_id)
    except MessagingError as e:
        raise _http_error(e)

    if receipt is not None:
        await _push_read_receipt(receipt)

    return _success("Message marked as read")


__all__ = ["router", "get_messaging_service"]
