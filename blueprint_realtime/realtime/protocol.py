"""
Realtime Protocol Contract
==========================

Event names, room naming and the JSON envelope shared by the gateway,
the trackers and the HTTP bridge.

Every frame, in both directions, is:

    {"type": "<event name>", "data": <payload>}

Client -> Server:
    authenticate        data: "<token>"
    sendMessage         data: {"conversationId"?, "recipientId"?, "content"}
    joinConversation    data: "<conversationId>"
    leaveConversation   data: "<conversationId>"
    markMessageAsRead   data: "<messageId>"
    startTyping         data: "<conversationId>"
    stopTyping          data: "<conversationId>"
    updateStatus        data: "online" | "away" | "busy" | "offline"
    pong                data: ignored

Server -> Client:
    connected, authenticated, authenticationError,
    newMessage, messageRead, messagingError,
    userStartedTyping, userStoppedTyping,
    userOnline, userOffline, userStatusChanged,
    ping, error
"""

from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel


class SocketEvents:
    # Connection
    CONNECTED = "connected"
    PING = "ping"
    PONG = "pong"
    ERROR = "error"

    # Authentication
    AUTHENTICATE = "authenticate"
    AUTHENTICATED = "authenticated"
    AUTHENTICATION_ERROR = "authenticationError"

    # Messaging
    SEND_MESSAGE = "sendMessage"
    NEW_MESSAGE = "newMessage"
    JOIN_CONVERSATION = "joinConversation"
    LEAVE_CONVERSATION = "leaveConversation"
    MARK_MESSAGE_AS_READ = "markMessageAsRead"
    MESSAGE_READ = "messageRead"
    MESSAGING_ERROR = "messagingError"

    # Typing
    START_TYPING = "startTyping"
    STOP_TYPING = "stopTyping"
    USER_STARTED_TYPING = "userStartedTyping"
    USER_STOPPED_TYPING = "userStoppedTyping"

    # Presence
    UPDATE_STATUS = "updateStatus"
    USER_ONLINE = "userOnline"
    USER_OFFLINE = "userOffline"
    USER_STATUS_CHANGED = "userStatusChanged"


CLIENT_EVENTS = frozenset({
    SocketEvents.AUTHENTICATE,
    SocketEvents.SEND_MESSAGE,
    SocketEvents.JOIN_CONVERSATION,
    SocketEvents.LEAVE_CONVERSATION,
    SocketEvents.MARK_MESSAGE_AS_READ,
    SocketEvents.START_TYPING,
    SocketEvents.STOP_TYPING,
    SocketEvents.UPDATE_STATUS,
    SocketEvents.PONG,
})

USER_ROOM_PREFIX = "user:"
CONVERSATION_ROOM_PREFIX = "conversation:"


def user_room(user_id: str) -> str:
    return f"{USER_ROOM_PREFIX}{user_id}"


def conversation_room(conversation_id: str) -> str:
    return f"{CONVERSATION_ROOM_PREFIX}{conversation_id}"


class ProtocolError(ValueError):
    """Inbound frame is not a valid envelope."""


def build_envelope(event: str, data: Any = None) -> Dict[str, Any]:
    """Wrap a payload; pydantic models are serialised to camelCase JSON."""
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, mode="json")
    return {"type": event, "data": data}


def parse_envelope(frame: Any) -> Tuple[str, Optional[Any]]:
    """
    Split an inbound frame into (event, data).

    Raises:
        ProtocolError: If the frame is not an object with a known string type
    """
    if not isinstance(frame, dict):
        raise ProtocolError("Frame must be a JSON object")

    event = frame.get("type")
    if not isinstance(event, str) or not event:
        raise ProtocolError("Frame is missing 'type'")
    if event not in CLIENT_EVENTS:
        raise ProtocolError(f"Unknown message type: {event}")

    return event, frame.get("data")
