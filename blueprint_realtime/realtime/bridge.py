"""
HTTP-to-Gateway Bridge
======================

Lets HTTP handlers push the same real-time events the gateway emits
natively. The application lifespan registers the running gateway here.

Callers must treat delivery as best-effort: emit_* raises
GatewayNotInitializedError when no gateway is running (e.g. during tests
or before startup), and the HTTP request must not fail because of it.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .gateway import RealtimeGateway

logger = logging.getLogger("blueprint_realtime.realtime.bridge")

_gateway: Optional["RealtimeGateway"] = None


class GatewayNotInitializedError(RuntimeError):
    """Raised when the bridge is used before a gateway is registered."""


def init_gateway(gateway: "RealtimeGateway") -> "RealtimeGateway":
    global _gateway
    _gateway = gateway
    logger.info("Realtime gateway registered with HTTP bridge")
    return gateway


def reset_gateway() -> None:
    global _gateway
    _gateway = None


def get_gateway() -> "RealtimeGateway":
    if _gateway is None:
        raise GatewayNotInitializedError("Socket server not initialized")
    return _gateway


async def emit_to_user(user_id: str, event: str, data: Any = None) -> int:
    """
    Emit an event to every connection of a user.

    Raises:
        GatewayNotInitializedError: If the gateway is not running
    """
    return await get_gateway().emit_to_user(user_id, event, data)


async def emit_to_conversation(conversation_id: str, event: str, data: Any = None) -> int:
    """
    Emit an event to every connection viewing a conversation.

    Raises:
        GatewayNotInitializedError: If the gateway is not running
    """
    return await get_gateway().emit_to_conversation(conversation_id, event, data)
