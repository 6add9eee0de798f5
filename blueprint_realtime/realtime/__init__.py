"""
Real-time Module
================

WebSocket gateway for direct messaging, presence and typing indicators.

Modules:
- protocol: Event names, wire envelope and room naming
- connections: Connection registry and room fan-out
- presence: Online/away/busy/offline tracking with idle sweep
- typing_tracker: Per-conversation typing indicators
- gateway: Connection lifecycle and event dispatch
- bridge: Lets HTTP handlers emit through the running gateway
- ws: WebSocket endpoint and status/presence/typing queries
- events: Internal event endpoint for other backend services
"""

from .bridge import GatewayNotInitializedError, emit_to_conversation, emit_to_user, get_gateway, init_gateway
from .events import internal_router
from .gateway import RealtimeGateway
from .ws import realtime_router

__all__ = [
    "RealtimeGateway",
    "GatewayNotInitializedError",
    "init_gateway",
    "get_gateway",
    "emit_to_user",
    "emit_to_conversation",
    "realtime_router",
    "internal_router",
]
