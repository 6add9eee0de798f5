"""
Typing Tracker
==============

Ephemeral, best-effort typing indicators: conversation id -> set of user
ids currently composing a message.

There is no server-side expiry. A client that never sends stopTyping
keeps its indicator until its connection closes and the gateway calls
clear_user().
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Set

from ..models import TypingData
from ..store.ports import ConversationStore
from .protocol import SocketEvents, conversation_room

logger = logging.getLogger("blueprint_realtime.realtime.typing")


class RoomEmitter(Protocol):
    async def emit_to_room(self, room: str, event: str, data: Any = None, exclude: Optional[str] = None) -> int:
        ...


class TypingTracker:
    """Registry of typing users per conversation."""

    def __init__(self, store: ConversationStore, emitter: RoomEmitter):
        self._store = store
        self._emitter = emitter
        self._typing: Dict[str, Set[str]] = {}

    async def _is_participant(self, conversation_id: str, user_id: str) -> bool:
        conversation = await self._store.find_by_id(conversation_id)
        return conversation is not None and conversation.has_participant(user_id)

    async def start_typing(
        self,
        conversation_id: str,
        user_id: str,
        username: str,
        connection_id: Optional[str] = None,
    ) -> bool:
        """
        Flag a participant as typing and tell the rest of the conversation room.

        Args:
            conversation_id: Conversation being typed in
            user_id: Typing user
            username: Display name carried in the event
            connection_id: Emitting connection, excluded from the broadcast

        Returns:
            bool: False if the user is not a participant (nothing changed)
        """
        if not await self._is_participant(conversation_id, user_id):
            logger.warning(
                "Ignoring startTyping from non-participant",
                extra={"conversation_id": conversation_id, "user_id": user_id}
            )
            return False

        self._typing.setdefault(conversation_id, set()).add(user_id)

        await self._emitter.emit_to_room(
            conversation_room(conversation_id),
            SocketEvents.USER_STARTED_TYPING,
            TypingData(conversation_id=conversation_id, user_id=user_id, username=username),
            exclude=connection_id,
        )
        return True

    async def stop_typing(
        self,
        conversation_id: str,
        user_id: str,
        username: str,
        connection_id: Optional[str] = None,
    ) -> bool:
        if not await self._is_participant(conversation_id, user_id):
            logger.warning(
                "Ignoring stopTyping from non-participant",
                extra={"conversation_id": conversation_id, "user_id": user_id}
            )
            return False

        self._discard(conversation_id, user_id)

        await self._emitter.emit_to_room(
            conversation_room(conversation_id),
            SocketEvents.USER_STOPPED_TYPING,
            TypingData(conversation_id=conversation_id, user_id=user_id, username=username),
            exclude=connection_id,
        )
        return True

    async def clear_user(self, user_id: str, username: str, connection_id: Optional[str] = None) -> List[str]:
        """
        Remove a user from every typing set (disconnect cleanup).

        Returns:
            Conversation ids the user was typing in
        """
        cleared = [cid for cid, typers in self._typing.items() if user_id in typers]

        for conversation_id in cleared:
            self._discard(conversation_id, user_id)

        for conversation_id in cleared:
            await self._emitter.emit_to_room(
                conversation_room(conversation_id),
                SocketEvents.USER_STOPPED_TYPING,
                TypingData(conversation_id=conversation_id, user_id=user_id, username=username),
                exclude=connection_id,
            )

        return cleared

    def _discard(self, conversation_id: str, user_id: str) -> None:
        typers = self._typing.get(conversation_id)
        if typers is None:
            return
        typers.discard(user_id)
        if not typers:
            del self._typing[conversation_id]

    def get_typing_users(self, conversation_id: str) -> List[str]:
        return sorted(self._typing.get(conversation_id, ()))

    def is_typing(self, conversation_id: str, user_id: str) -> bool:
        return user_id in self._typing.get(conversation_id, ())
