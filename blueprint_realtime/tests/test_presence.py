"""
Presence Tracker Tests
======================

Tests for blueprint_realtime/realtime/presence.py

Test Coverage:
--------------
1. offline <=> no connections, across multiple connections
2. Explicit status changes fan out only on change
3. Idle sweep demotes online users with an idle connection
4. Display data and lastSeen on fan-out
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from blueprint_realtime.models import UserStatus, utcnow
from blueprint_realtime.realtime.presence import PresenceTracker


@pytest.fixture
def broadcaster():
    mock = AsyncMock()
    mock.broadcast_status = AsyncMock()
    return mock


@pytest.fixture
def tracker(users, broadcaster):
    return PresenceTracker(users, broadcaster=broadcaster, idle_threshold_seconds=300)


def broadcast_statuses(broadcaster):
    return [
        (call.args[0].user_id, call.args[0].status)
        for call in broadcaster.broadcast_status.call_args_list
    ]


# ============================================================================
# Connection lifecycle
# ============================================================================

class TestConnectionLifecycle:

    @pytest.mark.asyncio
    async def test_first_connection_goes_online(self, tracker, broadcaster):
        await tracker.add_connection("c1", "alice")

        assert tracker.get_status("alice") is UserStatus.ONLINE
        assert tracker.is_online("alice")
        assert broadcast_statuses(broadcaster) == [("alice", UserStatus.ONLINE)]

    @pytest.mark.asyncio
    async def test_second_connection_does_not_rebroadcast(self, tracker, broadcaster):
        await tracker.add_connection("c1", "alice")
        await tracker.add_connection("c2", "alice")
        await tracker.add_connection("c2", "alice")

        assert broadcaster.broadcast_status.await_count == 1
        assert sorted(tracker.get_user_connections("alice")) == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_offline_only_after_last_connection(self, tracker, broadcaster):
        await tracker.add_connection("c1", "alice")
        await tracker.add_connection("c2", "alice")

        await tracker.remove_connection("c1")
        assert tracker.get_status("alice") is UserStatus.ONLINE

        await tracker.remove_connection("c2")
        assert tracker.get_status("alice") is UserStatus.OFFLINE
        assert not tracker.is_online("alice")
        assert broadcast_statuses(broadcaster) == [
            ("alice", UserStatus.ONLINE),
            ("alice", UserStatus.OFFLINE),
        ]

    @pytest.mark.asyncio
    async def test_offline_event_carries_last_seen(self, tracker, broadcaster):
        await tracker.add_connection("c1", "alice")
        await tracker.remove_connection("c1")

        online, offline = [call.args[0] for call in broadcaster.broadcast_status.call_args_list]
        assert online.last_seen is None
        assert offline.last_seen is not None

    @pytest.mark.asyncio
    async def test_removing_unknown_connection_is_noop(self, tracker, broadcaster):
        await tracker.remove_connection("nope")
        broadcaster.broadcast_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_seen_is_touched(self, tracker, users):
        await tracker.add_connection("c1", "bob")
        assert users.last_seen("bob") is not None

    @pytest.mark.asyncio
    async def test_unknown_profile_uses_handshake_username(self, tracker, broadcaster):
        await tracker.add_connection("c1", "zed", username="Zed Z")

        presence = broadcaster.broadcast_status.call_args.args[0]
        assert presence.username == "Zed Z"

    @pytest.mark.asyncio
    async def test_broadcast_failure_does_not_break_tracking(self, tracker, broadcaster):
        broadcaster.broadcast_status.side_effect = RuntimeError("boom")

        await tracker.add_connection("c1", "alice")

        assert tracker.is_online("alice")

    @pytest.mark.asyncio
    async def test_connection_stats(self, tracker):
        await tracker.add_connection("c1", "alice")
        await tracker.add_connection("c2", "alice")
        await tracker.add_connection("c3", "bob")

        assert tracker.get_connection_stats() == {
            "totalConnections": 3,
            "uniqueUsers": 2,
            "onlineUsers": 2,
        }
        assert sorted(tracker.list_online_users()) == ["alice", "bob"]


# ============================================================================
# Explicit status
# ============================================================================

class TestSetStatus:

    @pytest.mark.asyncio
    async def test_away_and_back(self, tracker, broadcaster):
        await tracker.add_connection("c1", "alice")

        await tracker.set_status("alice", "away")
        await tracker.set_status("alice", UserStatus.ONLINE)

        assert broadcast_statuses(broadcaster) == [
            ("alice", UserStatus.ONLINE),
            ("alice", UserStatus.AWAY),
            ("alice", UserStatus.ONLINE),
        ]

    @pytest.mark.asyncio
    async def test_same_status_does_not_broadcast(self, tracker, broadcaster):
        await tracker.add_connection("c1", "alice")
        await tracker.set_status("alice", "busy")
        await tracker.set_status("alice", "busy")

        assert broadcaster.broadcast_status.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_status_rejected(self, tracker):
        await tracker.add_connection("c1", "alice")

        with pytest.raises(ValueError):
            await tracker.set_status("alice", "sleeping")

    @pytest.mark.asyncio
    async def test_disconnected_user_ignored(self, tracker, broadcaster):
        await tracker.set_status("alice", "busy")

        assert tracker.get_status("alice") is UserStatus.OFFLINE
        broadcaster.broadcast_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_offline_request_while_connected_ignored(self, tracker):
        await tracker.add_connection("c1", "alice")

        await tracker.set_status("alice", "offline")

        assert tracker.get_status("alice") is UserStatus.ONLINE

    @pytest.mark.asyncio
    async def test_get_statuses(self, tracker):
        await tracker.add_connection("c1", "alice")
        await tracker.add_connection("c2", "bob")
        await tracker.set_status("bob", "busy")

        assert tracker.get_statuses(["alice", "bob", "carol"]) == {
            "alice": UserStatus.ONLINE,
            "bob": UserStatus.BUSY,
            "carol": UserStatus.OFFLINE,
        }


# ============================================================================
# Idle sweep
# ============================================================================

class TestIdleSweep:

    @pytest.mark.asyncio
    async def test_idle_online_user_becomes_away(self, tracker):
        await tracker.add_connection("c1", "alice")

        demoted = await tracker.sweep_idle(now=utcnow() + timedelta(seconds=301))

        assert demoted == ["alice"]
        assert tracker.get_status("alice") is UserStatus.AWAY
        assert tracker.get_user_connections("alice") == ["c1"]

    @pytest.mark.asyncio
    async def test_recent_activity_keeps_user_online(self, tracker):
        await tracker.add_connection("c1", "alice")
        later = utcnow() + timedelta(seconds=400)
        tracker.record_activity("c1", now=later - timedelta(seconds=10))

        assert await tracker.sweep_idle(now=later) == []
        assert tracker.get_status("alice") is UserStatus.ONLINE

    @pytest.mark.asyncio
    async def test_one_idle_connection_is_enough(self, tracker):
        await tracker.add_connection("c1", "alice")
        await tracker.add_connection("c2", "alice")
        later = utcnow() + timedelta(seconds=400)
        tracker.record_activity("c2", now=later)

        assert await tracker.sweep_idle(now=later) == ["alice"]
        assert tracker.get_status("alice") is UserStatus.AWAY

    @pytest.mark.asyncio
    async def test_busy_user_not_demoted(self, tracker):
        await tracker.add_connection("c1", "alice")
        await tracker.set_status("alice", "busy")

        assert await tracker.sweep_idle(now=utcnow() + timedelta(seconds=900)) == []
        assert tracker.get_status("alice") is UserStatus.BUSY
