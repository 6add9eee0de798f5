"""
Test doubles and helpers shared across the test modules.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt

from blueprint_realtime.config import Settings
from blueprint_realtime.models import Identity

TEST_JWT_SECRET = "test-jwt-secret-1234567890123456"
TEST_INTERNAL_SECRET = "test-internal-secret-1234567890123456"


class FakeWebSocket:
    """Records every frame sent to it; stands in for a connected client."""

    def __init__(self, fail_sends: bool = False, send_delay: float = 0):
        self.sent: List[Dict[str, Any]] = []
        self.closed_with: Optional[int] = None
        self.fail_sends = fail_sends
        # > 0 makes every send a real suspension point
        self.send_delay = send_delay

    async def send_json(self, message: Dict[str, Any]) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_sends:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed_with = code

    def events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [m for m in self.sent if event_type is None or m["type"] == event_type]

    def payloads(self, event_type: str) -> List[Any]:
        return [m["data"] for m in self.events(event_type)]

    def clear(self) -> None:
        self.sent.clear()


def make_identity(user_id: str) -> Identity:
    return Identity(user_id=user_id, username=user_id, email=f"{user_id}@example.com", tier="pro")


def encode_claims(settings: Settings, **claims: Any) -> str:
    """Sign arbitrary claims the way the main API does; claims override the defaults."""
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "id": "alice",
        "username": "alice",
        "email": "alice@example.com",
        "iat": now,
        "exp": now + timedelta(minutes=5),
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
    }
    payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
