"""Store ports consumed by the realtime core.

The gateway, trackers and HTTP routes depend on these protocols only.
Durable persistence of users, conversations and messages is owned by the
main Blueprint-XYZ API; any backend satisfying these signatures can be
wired in by create_application().
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..models import Conversation, Message, UserProfile


class StoreError(Exception):
    """Persistence layer failed or is unavailable."""


class StoreValidationError(StoreError):
    """A write was rejected because it would break a store invariant."""


class ConversationStore(Protocol):
    """Two-party conversations and their append-only messages."""

    async def find_by_id(self, conversation_id: str) -> Optional[Conversation]:
        ...

    async def find_by_participant_pair(self, user_a: str, user_b: str) -> Optional[Conversation]:
        """Order-independent lookup of the conversation between two users."""
        ...

    async def create(self, participants: Sequence[str]) -> Conversation:
        """Create a conversation; exactly two distinct participants."""
        ...

    async def find_or_create(self, participants: Sequence[str]) -> Tuple[Conversation, bool]:
        """
        Pair lookup and insert as one atomic step.

        Returns the conversation and whether it was created; concurrent
        first messages between the same two users share one conversation.
        """
        ...

    async def append_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        """Persist a message whose read-by set is seeded with the sender."""
        ...

    async def set_last_message(self, conversation_id: str, message_id: str) -> Conversation:
        ...

    async def find_message(self, message_id: str) -> Optional[Message]:
        ...

    async def mark_read(self, message_id: str, user_id: str) -> Message:
        """Set-union user_id into the message's read-by set."""
        ...

    async def list_for_user(self, user_id: str) -> List[Conversation]:
        """Conversations of a user, most recently updated first."""
        ...

    async def list_messages(self, conversation_id: str, skip: int = 0, limit: int = 50) -> List[Message]:
        """Messages of a conversation, newest first."""
        ...

    async def count_messages(self, conversation_id: str) -> int:
        ...

    async def list_partner_ids(self, user_id: str) -> List[str]:
        """Users sharing at least one conversation with user_id."""
        ...


class UserDirectory(Protocol):
    """Read-mostly access to user display data and last-seen bookkeeping."""

    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        """Profiles for the ids that exist; unknown ids are omitted."""
        ...

    async def touch_last_seen(self, user_id: str, at: datetime) -> None:
        ...
