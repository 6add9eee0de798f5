"""
In-Memory Stores
================

asyncio-friendly in-memory implementations of ConversationStore and
UserDirectory. They are the default wiring of the service and the
fixtures used by the test-suite. Returned records are copies; mutating
them never changes stored state.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models import Conversation, Message, UserProfile, utcnow
from .ports import StoreError, StoreValidationError

logger = logging.getLogger("blueprint_realtime.store.memory")


def new_id() -> str:
    return uuid.uuid4().hex


class InMemoryConversationStore:
    """Conversations and messages kept in process memory."""

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, Message] = {}
        # conversation_id -> message ids in insertion order
        self._timeline: Dict[str, List[str]] = {}
        self._lock = asyncio.Lock()

    async def find_by_id(self, conversation_id: str) -> Optional[Conversation]:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            return conversation.model_copy(deep=True) if conversation else None

    def _pair(self, participants: Sequence[str]) -> Optional[Conversation]:
        wanted = set(participants)
        for conversation in self._conversations.values():
            if set(conversation.participants) == wanted:
                return conversation
        return None

    def _insert(self, participants: List[str]) -> Conversation:
        if len(participants) != 2 or len(set(participants)) != 2:
            raise StoreValidationError("Conversation must have exactly 2 participants")

        conversation = Conversation(id=new_id(), participants=participants)
        self._conversations[conversation.id] = conversation
        self._timeline[conversation.id] = []
        logger.debug(
            f"Created conversation {conversation.id}",
            extra={"participants": participants}
        )
        return conversation

    async def find_by_participant_pair(self, user_a: str, user_b: str) -> Optional[Conversation]:
        async with self._lock:
            conversation = self._pair([user_a, user_b])
            return conversation.model_copy(deep=True) if conversation else None

    async def create(self, participants: Sequence[str]) -> Conversation:
        async with self._lock:
            return self._insert(list(participants)).model_copy(deep=True)

    async def find_or_create(self, participants: Sequence[str]) -> Tuple[Conversation, bool]:
        participants = list(participants)
        async with self._lock:
            conversation = self._pair(participants)
            created = conversation is None
            if created:
                conversation = self._insert(participants)
            return conversation.model_copy(deep=True), created

    async def append_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        async with self._lock:
            if conversation_id not in self._conversations:
                raise StoreError(f"Conversation {conversation_id} does not exist")

            message = Message(
                id=new_id(),
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                read_by=[sender_id],
            )
            self._messages[message.id] = message
            self._timeline[conversation_id].append(message.id)
            return message.model_copy(deep=True)

    async def set_last_message(self, conversation_id: str, message_id: str) -> Conversation:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise StoreError(f"Conversation {conversation_id} does not exist")
            conversation.last_message_id = message_id
            conversation.updated_at = utcnow()
            return conversation.model_copy(deep=True)

    async def find_message(self, message_id: str) -> Optional[Message]:
        async with self._lock:
            message = self._messages.get(message_id)
            return message.model_copy(deep=True) if message else None

    async def mark_read(self, message_id: str, user_id: str) -> Message:
        async with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                raise StoreError(f"Message {message_id} does not exist")
            if user_id not in message.read_by:
                message.read_by.append(user_id)
            return message.model_copy(deep=True)

    async def list_for_user(self, user_id: str) -> List[Conversation]:
        async with self._lock:
            conversations = [
                c.model_copy(deep=True)
                for c in self._conversations.values()
                if c.has_participant(user_id)
            ]
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return conversations

    async def list_messages(self, conversation_id: str, skip: int = 0, limit: int = 50) -> List[Message]:
        async with self._lock:
            ids = list(reversed(self._timeline.get(conversation_id, [])))
            return [self._messages[i].model_copy(deep=True) for i in ids[skip:skip + limit]]

    async def count_messages(self, conversation_id: str) -> int:
        async with self._lock:
            return len(self._timeline.get(conversation_id, []))

    async def list_partner_ids(self, user_id: str) -> List[str]:
        async with self._lock:
            partners = {
                p
                for c in self._conversations.values()
                if c.has_participant(user_id)
                for p in c.participants
                if p != user_id
            }
        return sorted(partners)


class InMemoryUserDirectory:
    """User profiles and last-seen timestamps kept in process memory."""

    def __init__(self, profiles: Optional[Iterable[UserProfile]] = None):
        self._profiles: Dict[str, UserProfile] = {p.id: p for p in (profiles or [])}
        self._last_seen: Dict[str, datetime] = {}

    def add(self, profile: UserProfile) -> None:
        self._profiles[profile.id] = profile

    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        return {
            user_id: self._profiles[user_id].model_copy()
            for user_id in user_ids
            if user_id in self._profiles
        }

    async def touch_last_seen(self, user_id: str, at: datetime) -> None:
        self._last_seen[user_id] = at

    def last_seen(self, user_id: str) -> Optional[datetime]:
        return self._last_seen.get(user_id)
