"""
Data Models Module

Pydantic models shared by the gateway, the messaging service and the HTTP
routes. Wire payloads serialise with camelCase keys.

Models are organized by functional area:
- Identity and user display models
- Conversation / message records (as returned by the stores)
- Enriched payloads pushed to clients
- Inbound payloads (socket events and REST bodies)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base model serialising to camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class UserStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


# ============================================================================
# Identity Models
# ============================================================================

class Identity(WireModel):
    """Verified identity extracted from an access token."""
    user_id: str = Field(..., description="Unique user identifier")
    username: str = Field(..., description="Public username")
    email: str = Field(..., description="User email address")
    tier: str = Field(default="free", description="Subscription tier")


class UserProfile(WireModel):
    """Display data for a user, resolved from the user directory."""
    id: str
    username: str
    profile_picture_url: Optional[str] = None


# ============================================================================
# Stored Records
# ============================================================================

class Conversation(WireModel):
    """Two-party conversation as persisted by the conversation store."""
    id: str
    participants: List[str] = Field(..., min_length=2, max_length=2)
    last_message_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants


class Message(WireModel):
    """Append-only message; only read_by changes after creation."""
    id: str
    conversation_id: str
    sender_id: str
    content: str
    read_by: List[str] = Field(default_factory=list)
    sent_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Outbound Payloads
# ============================================================================

class MessageView(WireModel):
    id: str
    conversation_id: str
    sender_id: str
    sender: UserProfile
    content: str
    read_by: List[str]
    sent_at: datetime


class ConversationView(WireModel):
    id: str
    participants: List[UserProfile]
    last_message_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def participant_ids(self) -> List[str]:
        return [p.id for p in self.participants]


class NewMessageData(WireModel):
    message: MessageView
    conversation: ConversationView


class MessageReadData(WireModel):
    message_id: str
    conversation_id: str
    read_by: str


class TypingData(WireModel):
    conversation_id: str
    user_id: str
    username: str


class PresenceData(WireModel):
    user_id: str
    username: str
    status: UserStatus
    last_seen: Optional[datetime] = None


# ============================================================================
# Inbound Payloads
# ============================================================================

class SendMessagePayload(WireModel):
    """
    Payload of the sendMessage event.

    Exactly one addressing mode must be supplied: an existing
    conversationId, or a recipientId to start (or reuse) a conversation.
    """
    conversation_id: Optional[str] = None
    recipient_id: Optional[str] = None
    content: str

    @field_validator("conversation_id", "recipient_id")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip()
            if not v:
                return None
        return v

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message cannot be empty")
        return v

    @model_validator(mode="after")
    def exactly_one_address(self) -> "SendMessagePayload":
        if self.conversation_id and self.recipient_id:
            raise ValueError("Provide either conversationId or recipientId, not both")
        if not self.conversation_id and not self.recipient_id:
            raise ValueError("Conversation ID or recipient ID required")
        return self


class ContentRequest(BaseModel):
    """REST body for sending a message."""
    content: str = Field(..., min_length=1)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message cannot be empty or only whitespace")
        return v


class InternalEventPayload(BaseModel):
    """Event pushed by another backend service through the bridge."""
    target: Literal["user", "conversation"] = Field(..., description="Room namespace")
    targetId: str = Field(..., min_length=1, description="User or conversation identifier")
    type: str = Field(..., min_length=1, description="Server-to-client event name")
    data: Any = Field(None, description="Event payload")


def validation_message(exc: ValidationError) -> str:
    """First error of a ValidationError as user-facing text."""
    errors = exc.errors()
    if not errors:
        return "Invalid payload"
    message = errors[0].get("msg", "Invalid payload")
    # pydantic prefixes errors raised from custom validators
    return message.removeprefix("Value error, ")
