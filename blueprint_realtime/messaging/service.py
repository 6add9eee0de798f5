"""
Messaging Service
=================

Conversation resolution, message persistence and read receipts shared by
the WebSocket gateway and the REST routes, so both entry paths apply the
same participation rules and produce the same event payloads. Delivery of
the resulting events is left to the caller.

Each store call is a separate step; there is no cross-call transaction.
Conversation lookup by participant pair before creation and append-only
messages keep a partially failed send recoverable.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import (
    Conversation,
    ConversationView,
    Message,
    MessageReadData,
    MessageView,
    NewMessageData,
    SendMessagePayload,
    UserProfile,
)
from ..store.ports import ConversationStore, UserDirectory

logger = logging.getLogger("blueprint_realtime.messaging.service")


class MessagingError(Exception):
    """User-visible messaging failure"""
    pass


class ConversationAccessError(MessagingError):
    """Conversation/message missing or caller is not a participant"""
    pass


class MessagingService:
    def __init__(self, store: ConversationStore, users: UserDirectory, max_length: int = 1000):
        self.store = store
        self.users = users
        self.max_length = max_length

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def get_accessible_conversation(self, user_id: str, conversation_id: str) -> Conversation:
        """
        Raises:
            ConversationAccessError: If missing or user_id is not a participant
        """
        conversation = await self.store.find_by_id(conversation_id)
        if conversation is None or not conversation.has_participant(user_id):
            raise ConversationAccessError("Conversation not found or access denied")
        return conversation

    async def find_or_create_conversation(self, sender_id: str, recipient_id: str) -> Conversation:
        if sender_id == recipient_id:
            raise MessagingError("Cannot start a conversation with yourself")

        conversation, created = await self.store.find_or_create([sender_id, recipient_id])
        if created:
            logger.info(
                "Started conversation",
                extra={"conversation_id": conversation.id, "participants": conversation.participants}
            )
        return conversation

    async def resolve_conversation(
        self,
        sender_id: str,
        conversation_id: Optional[str] = None,
        recipient_id: Optional[str] = None,
    ) -> Conversation:
        if conversation_id:
            return await self.get_accessible_conversation(sender_id, conversation_id)
        if recipient_id:
            return await self.find_or_create_conversation(sender_id, recipient_id)
        raise MessagingError("Conversation ID or recipient ID required")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(self, sender_id: str, payload: SendMessagePayload) -> NewMessageData:
        """
        Resolve the conversation, persist the message and move the
        conversation's last-message pointer.

        Returns:
            NewMessageData ready to be delivered

        Raises:
            MessagingError: Validation or access failure
            StoreError: Persistence failure
        """
        if len(payload.content) > self.max_length:
            raise MessagingError(f"Message cannot exceed {self.max_length} characters")

        conversation = await self.resolve_conversation(
            sender_id,
            conversation_id=payload.conversation_id,
            recipient_id=payload.recipient_id,
        )

        message = await self.store.append_message(conversation.id, sender_id, payload.content)
        conversation = await self.store.set_last_message(conversation.id, message.id)

        logger.info(
            "Message stored",
            extra={"conversation_id": conversation.id, "message_id": message.id, "sender_id": sender_id}
        )

        return await self.enrich(message, conversation)

    async def mark_as_read(self, user_id: str, message_id: str) -> Optional[MessageReadData]:
        """
        Add user_id to a message's read-by set.

        Returns:
            MessageReadData if the set changed, None if already read

        Raises:
            ConversationAccessError: Message or conversation missing, or not a participant
        """
        message = await self.store.find_message(message_id)
        if message is None:
            raise ConversationAccessError("Message not found")

        await self.get_accessible_conversation(user_id, message.conversation_id)

        if user_id in message.read_by:
            return None

        await self.store.mark_read(message_id, user_id)

        return MessageReadData(
            message_id=message_id,
            conversation_id=message.conversation_id,
            read_by=user_id,
        )

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def _profiles(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        user_ids = list(dict.fromkeys(user_ids))
        profiles = await self.users.get_profiles(user_ids)
        return {
            user_id: profiles.get(user_id) or UserProfile(id=user_id, username=user_id)
            for user_id in user_ids
        }

    @staticmethod
    def _conversation_view(conversation: Conversation, profiles: Dict[str, UserProfile]) -> ConversationView:
        return ConversationView(
            id=conversation.id,
            participants=[profiles[p] for p in conversation.participants],
            last_message_id=conversation.last_message_id,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )

    @staticmethod
    def _message_view(message: Message, profiles: Dict[str, UserProfile]) -> MessageView:
        return MessageView(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            sender=profiles[message.sender_id],
            content=message.content,
            read_by=list(message.read_by),
            sent_at=message.sent_at,
        )

    async def enrich(self, message: Message, conversation: Conversation) -> NewMessageData:
        profiles = await self._profiles([message.sender_id, *conversation.participants])
        return NewMessageData(
            message=self._message_view(message, profiles),
            conversation=self._conversation_view(conversation, profiles),
        )

    async def list_conversations(self, user_id: str) -> List[ConversationView]:
        conversations = await self.store.list_for_user(user_id)
        profiles = await self._profiles(p for c in conversations for p in c.participants)
        return [self._conversation_view(c, profiles) for c in conversations]

    async def list_messages(
        self,
        user_id: str,
        conversation_id: str,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[MessageView], int]:
        """
        One page of a conversation, oldest first within the page.

        Returns:
            (messages, total message count)
        """
        await self.get_accessible_conversation(user_id, conversation_id)

        skip = (page - 1) * limit
        messages = await self.store.list_messages(conversation_id, skip=skip, limit=limit)
        total = await self.store.count_messages(conversation_id)

        profiles = await self._profiles(m.sender_id for m in messages)
        views = [self._message_view(m, profiles) for m in reversed(messages)]
        return views, total
