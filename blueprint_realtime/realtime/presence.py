"""
Presence Tracker
================

Single source of truth for "who is online", decoupled from any one
connection.

State is process-wide and only mutated from the gateway's event loop, so
no locking is needed: every mutation completes before the first await of
the operation that performs it.

Invariant: a user's status is offline if and only if they have no open
connection. The first connection makes the user online, the last
disconnect makes them offline; away/busy are overrides that stick until
changed or until the last connection closes.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Set, Union

from ..models import PresenceData, UserStatus, utcnow
from ..store.ports import UserDirectory

logger = logging.getLogger("blueprint_realtime.realtime.presence")


class PresenceBroadcaster(Protocol):
    """Fan-out target for status transitions (implemented by the gateway)."""

    async def broadcast_status(self, presence: PresenceData) -> None:
        ...


@dataclass
class ConnectionInfo:
    connection_id: str
    user_id: str
    connected_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_activity = now or utcnow()

    def idle_seconds(self, now: datetime) -> float:
        return (now - self.last_activity).total_seconds()


class PresenceTracker:
    """
    Registry of users -> open connections and presence status.

    Attributes:
        idle_threshold_seconds: inactivity after which online becomes away
        sweep_interval_seconds: period of the background idle sweep
    """

    def __init__(
        self,
        users: UserDirectory,
        broadcaster: Optional[PresenceBroadcaster] = None,
        idle_threshold_seconds: float = 300.0,
        sweep_interval_seconds: float = 60.0,
    ):
        self._users = users
        self._broadcaster = broadcaster
        self.idle_threshold_seconds = idle_threshold_seconds
        self.sweep_interval_seconds = sweep_interval_seconds

        self._connections: Dict[str, ConnectionInfo] = {}  # connection_id -> info
        self._user_connections: Dict[str, Set[str]] = {}  # user_id -> connection_ids
        self._status: Dict[str, UserStatus] = {}  # user_id -> status (connected users only)
        self._usernames: Dict[str, str] = {}  # fallback display names

    def set_broadcaster(self, broadcaster: PresenceBroadcaster) -> None:
        self._broadcaster = broadcaster

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def add_connection(self, connection_id: str, user_id: str, username: Optional[str] = None) -> None:
        """Register a connection; the user's first connection makes them online."""
        if connection_id in self._connections:
            return

        self._connections[connection_id] = ConnectionInfo(connection_id=connection_id, user_id=user_id)
        sockets = self._user_connections.setdefault(user_id, set())
        sockets.add(connection_id)
        if username:
            self._usernames[user_id] = username

        logger.debug(
            "Presence connection added",
            extra={"user_id": user_id, "connection_id": connection_id, "user_connections": len(sockets)}
        )

        if len(sockets) == 1:
            await self._apply_status(user_id, UserStatus.ONLINE)

        await self._touch_last_seen(user_id)

    async def remove_connection(self, connection_id: str) -> None:
        """Deregister a connection; the user's last connection makes them offline."""
        info = self._connections.pop(connection_id, None)
        if info is None:
            return

        user_id = info.user_id
        sockets = self._user_connections.get(user_id)
        if sockets is not None:
            sockets.discard(connection_id)
            if not sockets:
                del self._user_connections[user_id]
                await self._apply_status(user_id, UserStatus.OFFLINE)
                if not self.is_online(user_id):
                    self._usernames.pop(user_id, None)

        await self._touch_last_seen(user_id)

    def record_activity(self, connection_id: str, now: Optional[datetime] = None) -> None:
        info = self._connections.get(connection_id)
        if info is not None:
            info.touch(now)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def set_status(self, user_id: str, status: Union[UserStatus, str]) -> None:
        """
        Overwrite a connected user's status; fans out only on change.

        Raises:
            ValueError: If status is not one of the four presence statuses
        """
        status = UserStatus(status)

        if not self.is_online(user_id):
            logger.debug(f"Ignoring status {status.value} for disconnected user {user_id}")
            return

        if status is UserStatus.OFFLINE:
            logger.warning(
                "Ignoring offline status request from a connected user",
                extra={"user_id": user_id}
            )
            return

        await self._apply_status(user_id, status)

    async def _apply_status(self, user_id: str, status: UserStatus) -> None:
        previous = self.get_status(user_id)

        if status is UserStatus.OFFLINE:
            self._status.pop(user_id, None)
        else:
            self._status[user_id] = status

        if previous is not status:
            logger.info(
                f"User {user_id} is now {status.value}",
                extra={"user_id": user_id, "previous": previous.value, "status": status.value}
            )
            await self._emit_status_change(user_id, status)

    def get_status(self, user_id: str) -> UserStatus:
        return self._status.get(user_id, UserStatus.OFFLINE)

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_connections.get(user_id))

    def list_online_users(self) -> List[str]:
        return list(self._user_connections.keys())

    def get_statuses(self, user_ids: List[str]) -> Dict[str, UserStatus]:
        return {user_id: self.get_status(user_id) for user_id in user_ids}

    def get_user_connections(self, user_id: str) -> List[str]:
        return list(self._user_connections.get(user_id, ()))

    def get_connection_stats(self) -> Dict[str, int]:
        return {
            "totalConnections": len(self._connections),
            "uniqueUsers": len(self._user_connections),
            "onlineUsers": len(self.list_online_users()),
        }

    # ------------------------------------------------------------------
    # Idle detection
    # ------------------------------------------------------------------

    async def sweep_idle(self, now: Optional[datetime] = None) -> List[str]:
        """
        Demote online users with an idle connection to away.

        Connections are never removed here.

        Returns:
            User ids that were demoted
        """
        now = now or utcnow()
        demoted: List[str] = []

        for info in list(self._connections.values()):
            if info.idle_seconds(now) <= self.idle_threshold_seconds:
                continue
            if self.get_status(info.user_id) is UserStatus.ONLINE:
                await self._apply_status(info.user_id, UserStatus.AWAY)
                demoted.append(info.user_id)

        if demoted:
            logger.info(f"Idle sweep marked {len(demoted)} user(s) away")

        return demoted

    async def run_idle_sweep(self) -> None:
        """Background loop running sweep_idle every sweep_interval_seconds."""
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep_idle()
            except Exception as e:
                logger.error(f"Idle sweep failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Fan-out and bookkeeping
    # ------------------------------------------------------------------

    async def _emit_status_change(self, user_id: str, status: UserStatus) -> None:
        if self._broadcaster is None:
            return

        try:
            profiles = await self._users.get_profiles([user_id])
            profile = profiles.get(user_id)
            username = profile.username if profile else self._usernames.get(user_id, user_id)

            presence = PresenceData(
                user_id=user_id,
                username=username,
                status=status,
                last_seen=utcnow() if status is UserStatus.OFFLINE else None,
            )
            await self._broadcaster.broadcast_status(presence)
        except Exception as e:
            logger.error(f"Error emitting status change for {user_id}: {e}", exc_info=True)

    async def _touch_last_seen(self, user_id: str) -> None:
        try:
            await self._users.touch_last_seen(user_id, utcnow())
        except Exception as e:
            logger.warning(f"Error updating last seen for {user_id}: {e}")
