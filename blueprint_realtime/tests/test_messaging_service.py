"""
Messaging Service and Store Tests
=================================

Tests for blueprint_realtime/messaging/service.py and
blueprint_realtime/store/memory.py

Test Coverage:
--------------
1. Conversation resolution: by id (participants only) or by recipient
2. Exactly one conversation per participant pair
3. Message persistence, last-message pointer, enrichment
4. Read receipts: set semantics, first read only
5. Pagination order
"""

import asyncio

import pytest

from blueprint_realtime.messaging.service import (
    ConversationAccessError,
    MessagingError,
    MessagingService,
)
from blueprint_realtime.models import SendMessagePayload
from blueprint_realtime.store.memory import InMemoryConversationStore
from blueprint_realtime.store.ports import StoreError, StoreValidationError


class YieldingStore(InMemoryConversationStore):
    """Suspends before every conversation lookup or write, like a networked store."""

    async def find_by_participant_pair(self, user_a, user_b):
        await asyncio.sleep(0)
        return await super().find_by_participant_pair(user_a, user_b)

    async def create(self, participants):
        await asyncio.sleep(0)
        return await super().create(participants)

    async def find_or_create(self, participants):
        await asyncio.sleep(0)
        return await super().find_or_create(participants)


@pytest.fixture
def service(store, users):
    return MessagingService(store, users, max_length=20)


# ============================================================================
# Store
# ============================================================================

class TestInMemoryStore:

    @pytest.mark.asyncio
    async def test_create_requires_two_distinct_participants(self, store):
        with pytest.raises(StoreValidationError):
            await store.create(["alice"])
        with pytest.raises(StoreValidationError):
            await store.create(["alice", "alice"])
        with pytest.raises(StoreValidationError):
            await store.create(["alice", "bob", "carol"])

    @pytest.mark.asyncio
    async def test_pair_lookup_is_order_independent(self, store):
        conversation = await store.create(["alice", "bob"])

        found = await store.find_by_participant_pair("bob", "alice")

        assert found.id == conversation.id
        assert await store.find_by_participant_pair("alice", "carol") is None

    @pytest.mark.asyncio
    async def test_append_to_missing_conversation_fails(self, store):
        with pytest.raises(StoreError):
            await store.append_message("missing", "alice", "hi")

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        conversation = await store.create(["alice", "bob"])
        conversation.participants.append("mallory")

        stored = await store.find_by_id(conversation.id)

        assert stored.participants == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_list_partner_ids(self, store):
        await store.create(["alice", "bob"])
        await store.create(["carol", "alice"])
        await store.create(["bob", "carol"])

        assert await store.list_partner_ids("alice") == ["bob", "carol"]
        assert await store.list_partner_ids("dave") == []

    @pytest.mark.asyncio
    async def test_find_or_create_reuses_pair(self, store):
        first, created = await store.find_or_create(["alice", "bob"])
        second, created_again = await store.find_or_create(["bob", "alice"])

        assert created is True
        assert created_again is False
        assert first.id == second.id

        with pytest.raises(StoreValidationError):
            await store.find_or_create(["alice", "alice"])


# ============================================================================
# Sending
# ============================================================================

class TestSendMessage:

    @pytest.mark.asyncio
    async def test_send_to_recipient_creates_conversation(self, service, store):
        result = await service.send_message("alice", SendMessagePayload(recipient_id="bob", content="  hello  "))

        assert result.message.content == "hello"
        assert result.message.sender.username == "alice"
        assert result.message.sender.profile_picture_url == "https://cdn.example.com/alice.png"
        assert result.message.read_by == ["alice"]
        assert sorted(result.conversation.participant_ids) == ["alice", "bob"]
        assert result.conversation.last_message_id == result.message.id

        stored = await store.find_by_id(result.conversation.id)
        assert stored.last_message_id == result.message.id

    @pytest.mark.asyncio
    async def test_second_send_reuses_conversation(self, service):
        first = await service.send_message("alice", SendMessagePayload(recipient_id="bob", content="one"))
        second = await service.send_message("bob", SendMessagePayload(recipient_id="alice", content="two"))

    @pytest.mark.asyncio
    async def test_concurrent_first_sends_share_one_conversation(self, users):
        store = YieldingStore()
        service = MessagingService(store, users)

        first, second = await asyncio.gather(
            service.send_message("alice", SendMessagePayload(recipient_id="bob", content="hi bob")),
            service.send_message("bob", SendMessagePayload(recipient_id="alice", content="hi alice")),
        )

        assert first.conversation.id == second.conversation.id
        assert len(await store.list_for_user("alice")) == 1
        assert await store.count_messages(first.conversation.id) == 2

        assert first.conversation.id == second.conversation.id

    @pytest.mark.asyncio
    async def test_send_by_conversation_id(self, service, store):
        conversation = await store.create(["alice", "bob"])

        result = await service.send_message("bob", SendMessagePayload(conversation_id=conversation.id, content="hey"))

        assert result.conversation.id == conversation.id

    @pytest.mark.asyncio
    async def test_non_participant_cannot_send(self, service, store):
        conversation = await store.create(["alice", "bob"])

        with pytest.raises(ConversationAccessError):
            await service.send_message("carol", SendMessagePayload(conversation_id=conversation.id, content="hi"))

        assert await store.count_messages(conversation.id) == 0

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, service):
        with pytest.raises(ConversationAccessError):
            await service.send_message("alice", SendMessagePayload(conversation_id="missing", content="hi"))

    @pytest.mark.asyncio
    async def test_message_to_self_rejected(self, service):
        with pytest.raises(MessagingError) as exc_info:
            await service.send_message("alice", SendMessagePayload(recipient_id="alice", content="hi"))

        assert not isinstance(exc_info.value, ConversationAccessError)

    @pytest.mark.asyncio
    async def test_content_too_long(self, service):
        with pytest.raises(MessagingError) as exc_info:
            await service.send_message("alice", SendMessagePayload(recipient_id="bob", content="x" * 21))

        assert "20" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unknown_profile_falls_back_to_id(self, service):
        result = await service.send_message("alice", SendMessagePayload(recipient_id="zed", content="hi"))

        zed = [p for p in result.conversation.participants if p.id == "zed"][0]
        assert zed.username == "zed"


# ============================================================================
# Read receipts
# ============================================================================

class TestMarkAsRead:

    @pytest.mark.asyncio
    async def test_first_read_returns_receipt(self, service, store):
        sent = await service.send_message("alice", SendMessagePayload(recipient_id="bob", content="hi"))

        receipt = await service.mark_as_read("bob", sent.message.id)

        assert receipt.message_id == sent.message.id
        assert receipt.conversation_id == sent.conversation.id
        assert receipt.read_by == "bob"

        stored = await store.find_message(sent.message.id)
        assert sorted(stored.read_by) == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_repeat_read_is_noop(self, service, store):
        sent = await service.send_message("alice", SendMessagePayload(recipient_id="bob", content="hi"))

        await service.mark_as_read("bob", sent.message.id)
        assert await service.mark_as_read("bob", sent.message.id) is None
        assert await service.mark_as_read("alice", sent.message.id) is None

        stored = await store.find_message(sent.message.id)
        assert stored.read_by.count("bob") == 1

    @pytest.mark.asyncio
    async def test_non_participant_cannot_mark(self, service):
        sent = await service.send_message("alice", SendMessagePayload(recipient_id="bob", content="hi"))

        with pytest.raises(ConversationAccessError):
            await service.mark_as_read("carol", sent.message.id)

    @pytest.mark.asyncio
    async def test_unknown_message(self, service):
        with pytest.raises(ConversationAccessError):
            await service.mark_as_read("bob", "missing")


# ============================================================================
# Listing
# ============================================================================

class TestListing:

    @pytest.mark.asyncio
    async def test_pages_are_oldest_first_within_page(self, service):
        sent = []
        for i in range(5):
            result = await service.send_message("alice", SendMessagePayload(recipient_id="bob", content=f"m{i}"))
            sent.append(result)
        conversation_id = sent[0].conversation.id

        page1, total = await service.list_messages("bob", conversation_id, page=1, limit=2)
        page2, _ = await service.list_messages("bob", conversation_id, page=2, limit=2)

        assert total == 5
        assert [m.content for m in page1] == ["m3", "m4"]
        assert [m.content for m in page2] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_list_requires_participation(self, service, store):
        conversation = await store.create(["alice", "bob"])

        with pytest.raises(ConversationAccessError):
            await service.list_messages("carol", conversation.id)

    @pytest.mark.asyncio
    async def test_list_conversations(self, service):
        await service.send_message("alice", SendMessagePayload(recipient_id="bob", content="a"))
        await service.send_message("carol", SendMessagePayload(recipient_id="alice", content="b"))

        conversations = await service.list_conversations("alice")

        assert len(conversations) == 2
        assert "carol" in conversations[0].participant_ids
        assert await service.list_conversations("dave") == []
