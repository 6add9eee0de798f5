"""
Shared fixtures for the realtime service tests.
"""

import pytest

from blueprint_realtime.auth.session import create_access_token
from blueprint_realtime.config import Settings
from blueprint_realtime.models import UserProfile
from blueprint_realtime.store.memory import InMemoryConversationStore, InMemoryUserDirectory

from .helpers import TEST_INTERNAL_SECRET, TEST_JWT_SECRET, make_identity


@pytest.fixture
def settings():
    """Create test settings, isolated from any local .env"""
    return Settings(
        _env_file=None,
        JWT_SECRET=TEST_JWT_SECRET,
        INTERNAL_SHARED_SECRET=TEST_INTERNAL_SECRET,
        ALLOWED_ORIGINS="http://localhost:3000",
        WS_PING_INTERVAL_SECONDS=3600,
        PRESENCE_SWEEP_INTERVAL_SECONDS=3600,
    )


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def users():
    return InMemoryUserDirectory([
        UserProfile(id="alice", username="alice", profile_picture_url="https://cdn.example.com/alice.png"),
        UserProfile(id="bob", username="bob"),
        UserProfile(id="carol", username="carol"),
    ])


@pytest.fixture
def make_token(settings):
    """Factory minting access tokens for a user id"""
    def _make(user_id: str, **kwargs) -> str:
        return create_access_token(make_identity(user_id), settings=settings, **kwargs)
    return _make
