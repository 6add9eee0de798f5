"""
Real-Time Gateway
=================

Owns the lifecycle of every connection, dispatches inbound protocol
events and fans out outbound events to rooms.

Connection lifecycle:
    Connecting     -> credential verified at handshake (or later via the
                      authenticate event)
    Authenticated  -> registered with presence, joined to user:<id>
    Active         -> any protocol event accepted
    Disconnected   -> presence deregistration, typing cleanup

Every handler is a catch boundary: failures are logged and reported to
the emitting connection only, never raised to the transport. Requests
from non-participants on join/read/typing paths are logged and ignored.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from fastapi import WebSocket
from pydantic import ValidationError

from ..auth.session import CredentialError, verify_access_token
from ..config import Settings
from ..messaging.service import ConversationAccessError, MessagingError, MessagingService
from ..models import (
    Identity,
    NewMessageData,
    PresenceData,
    SendMessagePayload,
    UserStatus,
    utcnow,
    validation_message,
)
from ..store.ports import ConversationStore, UserDirectory
from .connections import Connection, ConnectionManager
from .presence import PresenceTracker
from .protocol import SocketEvents, conversation_room, user_room
from .typing_tracker import TypingTracker

logger = logging.getLogger("blueprint_realtime.realtime.gateway")

Handler = Callable[[Connection, Any], Awaitable[None]]


class RealtimeGateway:
    """
    The socket server: authentication, routing and room fan-out.

    Presence and typing trackers are injected so the in-memory maps can
    be swapped for a shared store without changing this class.
    """

    def __init__(
        self,
        store: ConversationStore,
        users: UserDirectory,
        settings: Settings,
        presence: Optional[PresenceTracker] = None,
        typing: Optional[TypingTracker] = None,
        manager: Optional[ConnectionManager] = None,
        verifier: Optional[Callable[[str], Identity]] = None,
    ):
        self.store = store
        self.users = users
        self.settings = settings
        self.manager = manager or ConnectionManager()
        self.presence = presence or PresenceTracker(
            users,
            idle_threshold_seconds=settings.PRESENCE_IDLE_THRESHOLD_SECONDS,
            sweep_interval_seconds=settings.PRESENCE_SWEEP_INTERVAL_SECONDS,
        )
        self.presence.set_broadcaster(self)
        self.typing = typing or TypingTracker(store, self.manager)
        self.messaging = MessagingService(store, users, max_length=settings.MESSAGE_MAX_LENGTH)
        self.verify = verifier or partial(verify_access_token, settings=settings)
        self.broadcast_scope = settings.PRESENCE_BROADCAST_SCOPE

        self._sweep_task: Optional[asyncio.Task] = None
        self._closing: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Handler] = {
            SocketEvents.AUTHENTICATE: self.handle_authenticate,
            SocketEvents.SEND_MESSAGE: self.handle_send_message,
            SocketEvents.JOIN_CONVERSATION: self.handle_join_conversation,
            SocketEvents.LEAVE_CONVERSATION: self.handle_leave_conversation,
            SocketEvents.MARK_MESSAGE_AS_READ: self.handle_mark_as_read,
            SocketEvents.START_TYPING: self.handle_start_typing,
            SocketEvents.STOP_TYPING: self.handle_stop_typing,
            SocketEvents.UPDATE_STATUS: self.handle_update_status,
            SocketEvents.PONG: self.handle_pong,
        }

    # ==================================================================
    # Startup / shutdown
    # ==================================================================

    async def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self.presence.run_idle_sweep())
            logger.info(
                "Presence idle sweep started",
                extra={"interval_seconds": self.presence.sweep_interval_seconds}
            )

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        await self.manager.close_all()

        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    # ==================================================================
    # Connection lifecycle
    # ==================================================================

    async def open_connection(self, websocket: WebSocket, identity: Optional[Identity] = None) -> Connection:
        """
        Register an accepted WebSocket.

        With an identity (handshake-time authentication) the connection is
        bound immediately and receives a connected frame; without one it
        stays unauthenticated until an authenticate event succeeds.
        """
        connection = Connection(websocket=websocket)
        await self.manager.register(connection)

        if identity is not None:
            await self._bind_identity(connection, identity)
            await self.manager.send(connection, SocketEvents.CONNECTED, {
                "connectionId": connection.id,
                "user": identity.to_wire(),
                "timestamp": utcnow().isoformat(),
            })

        return connection

    async def close_connection(self, connection: Connection) -> None:
        """Disconnect cleanup; never raises."""
        await self.manager.unregister(connection.id)

        if connection.identity is None:
            return

        try:
            await self._unbind_identity(connection)
        except Exception as e:
            logger.error(f"Error cleaning up connection {connection.id}: {e}", exc_info=True)

    def schedule_close(self, connection: Connection) -> asyncio.Task:
        """
        Run disconnect cleanup in its own task and return it.

        The transport may cancel the endpoint task while cleanup is still
        fanning out, so the endpoint awaits this task through asyncio.shield;
        the task is referenced here until it finishes.
        """
        task = asyncio.create_task(self.close_connection(connection))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        return task

    async def _bind_identity(self, connection: Connection, identity: Identity) -> None:
        connection.identity = identity
        await self.manager.join(connection, user_room(identity.user_id))
        await self.presence.add_connection(connection.id, identity.user_id, identity.username)

        logger.info(
            f"User {identity.username} connected ({connection.id})",
            extra={"user_id": identity.user_id, "connection_id": connection.id}
        )

    async def _unbind_identity(self, connection: Connection) -> None:
        identity = connection.identity
        if identity is None:
            return

        await self.manager.leave(connection, user_room(identity.user_id))
        await self.typing.clear_user(identity.user_id, identity.username, connection_id=connection.id)
        await self.presence.remove_connection(connection.id)

        logger.info(
            f"User {identity.username} disconnected ({connection.id})",
            extra={"user_id": identity.user_id, "connection_id": connection.id}
        )

    # ==================================================================
    # Dispatch
    # ==================================================================

    async def dispatch(self, connection: Connection, event: str, data: Any = None) -> None:
        """Route one inbound event to its handler; the per-event catch boundary."""
        handler = self._handlers.get(event)
        if handler is None:
            await self.manager.send(connection, SocketEvents.ERROR, {"message": f"Unknown message type: {event}"})
            return

        if connection.is_authenticated:
            self.presence.record_activity(connection.id)

        try:
            await handler(connection, data)
        except Exception as e:
            logger.error(
                f"Error handling {event}: {str(e)}",
                extra={"connection_id": connection.id, "event_type": event},
                exc_info=True
            )
            await self.manager.send(connection, SocketEvents.MESSAGING_ERROR, f"Failed to process {event}")

    # ==================================================================
    # Handlers
    # ==================================================================

    async def handle_authenticate(self, connection: Connection, data: Any) -> None:
        """Manual authentication fallback."""
        if not isinstance(data, str) or not data:
            await self.manager.send(connection, SocketEvents.AUTHENTICATION_ERROR, "Authentication failed")
            return

        try:
            identity = self.verify(data)
        except CredentialError as e:
            logger.warning(f"Socket authentication failed: {e}", extra={"connection_id": connection.id})
            await self.manager.send(connection, SocketEvents.AUTHENTICATION_ERROR, "Authentication failed")
            return

        if connection.user_id != identity.user_id:
            if connection.is_authenticated:
                await self._unbind_identity(connection)
                # conversation rooms were joined under the previous identity
                for room in list(connection.rooms):
                    await self.manager.leave(connection, room)
            await self._bind_identity(connection, identity)
        else:
            connection.identity = identity

        await self.manager.send(connection, SocketEvents.AUTHENTICATED, identity)

    async def handle_send_message(self, connection: Connection, data: Any) -> None:
        if not connection.is_authenticated:
            await self.manager.send(connection, SocketEvents.MESSAGING_ERROR, "Authentication required")
            return

        sender_id = connection.user_id

        try:
            payload = SendMessagePayload.model_validate(data)
            message_data = await self.messaging.send_message(sender_id, payload)
        except ValidationError as e:
            await self.manager.send(connection, SocketEvents.MESSAGING_ERROR, validation_message(e))
            return
        except MessagingError as e:
            await self.manager.send(connection, SocketEvents.MESSAGING_ERROR, str(e))
            return
        except Exception as e:
            logger.error(f"Error sending message: {e}", extra={"sender_id": sender_id}, exc_info=True)
            await self.manager.send(connection, SocketEvents.MESSAGING_ERROR, "Failed to send message")
            return

        await self.deliver_new_message(message_data, sender_id)

    async def deliver_new_message(self, message_data: NewMessageData, sender_id: str) -> int:
        """
        Dual delivery: the conversation room, plus every other participant's
        personal room. Connections in both receive the event twice.
        """
        conversation_id = message_data.conversation.id
        delivered = await self.manager.emit_to_room(
            conversation_room(conversation_id), SocketEvents.NEW_MESSAGE, message_data
        )

        for participant_id in message_data.conversation.participant_ids:
            if participant_id != sender_id:
                delivered += await self.manager.emit_to_room(
                    user_room(participant_id), SocketEvents.NEW_MESSAGE, message_data
                )

        return delivered

    async def handle_mark_as_read(self, connection: Connection, data: Any) -> None:
        if not connection.is_authenticated or not isinstance(data, str):
            return

        try:
            receipt = await self.messaging.mark_as_read(connection.user_id, data)
        except ConversationAccessError as e:
            logger.warning(
                f"Ignoring markMessageAsRead: {e}",
                extra={"user_id": connection.user_id, "message_id": data}
            )
            return

        if receipt is not None:
            await self.manager.emit_to_room(
                conversation_room(receipt.conversation_id), SocketEvents.MESSAGE_READ, receipt
            )

    async def handle_join_conversation(self, connection: Connection, data: Any) -> None:
        if not connection.is_authenticated or not isinstance(data, str):
            return

        conversation = await self.store.find_by_id(data)
        if conversation is None or not conversation.has_participant(connection.user_id):
            logger.warning(
                "Ignoring joinConversation from non-participant",
                extra={"user_id": connection.user_id, "conversation_id": data}
            )
            return

        await self.manager.join(connection, conversation_room(conversation.id))

    async def handle_leave_conversation(self, connection: Connection, data: Any) -> None:
        if isinstance(data, str):
            await self.manager.leave(connection, conversation_room(data))

    async def handle_start_typing(self, connection: Connection, data: Any) -> None:
        if not connection.is_authenticated or not isinstance(data, str):
            return
        identity = connection.identity
        await self.typing.start_typing(data, identity.user_id, identity.username, connection_id=connection.id)

    async def handle_stop_typing(self, connection: Connection, data: Any) -> None:
        if not connection.is_authenticated or not isinstance(data, str):
            return
        identity = connection.identity
        await self.typing.stop_typing(data, identity.user_id, identity.username, connection_id=connection.id)

    async def handle_update_status(self, connection: Connection, data: Any) -> None:
        if not connection.is_authenticated:
            return

        try:
            status = UserStatus(data)
        except ValueError:
            logger.warning(f"Ignoring invalid status {data!r}", extra={"user_id": connection.user_id})
            return

        await self.presence.set_status(connection.user_id, status)

    async def handle_pong(self, connection: Connection, data: Any) -> None:
        logger.debug("Received pong from client", extra={"connection_id": connection.id})

    # ==================================================================
    # Presence fan-out
    # ==================================================================

    async def broadcast_status(self, presence: PresenceData) -> None:
        """
        userStatusChanged to the user's own devices; userOnline/userOffline
        (or userStatusChanged for away/busy) to the wider audience.
        """
        own_room = user_room(presence.user_id)
        await self.manager.emit_to_room(own_room, SocketEvents.USER_STATUS_CHANGED, presence)

        if presence.status is UserStatus.ONLINE:
            event = SocketEvents.USER_ONLINE
        elif presence.status is UserStatus.OFFLINE:
            event = SocketEvents.USER_OFFLINE
        else:
            event = SocketEvents.USER_STATUS_CHANGED

        if self.broadcast_scope == "partners":
            for partner_id in await self.store.list_partner_ids(presence.user_id):
                await self.manager.emit_to_room(user_room(partner_id), event, presence)
            return

        own = set(self.manager.room_members(own_room))
        others = [cid for cid in list(self.manager.connections) if cid not in own]
        await self.manager.emit_to_connections(others, event, presence)

    # ==================================================================
    # Bridge surface
    # ==================================================================

    async def emit_to_user(self, user_id: str, event: str, data: Any = None) -> int:
        return await self.manager.emit_to_room(user_room(user_id), event, data)

    async def emit_to_conversation(self, conversation_id: str, event: str, data: Any = None) -> int:
        return await self.manager.emit_to_room(conversation_room(conversation_id), event, data)

    def get_stats(self) -> Dict[str, int]:
        stats = self.presence.get_connection_stats()
        stats["activeConversationRooms"] = self.manager.count_rooms()
        return stats
