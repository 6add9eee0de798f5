"""
Store Package

Ports for the external conversation/message and user stores plus the
in-memory implementations wired by default.

Modules:
- ports: ConversationStore / UserDirectory protocols and store errors
- memory: asyncio in-memory implementations
"""

from .memory import InMemoryConversationStore, InMemoryUserDirectory
from .ports import ConversationStore, StoreError, StoreValidationError, UserDirectory

__all__ = [
    "ConversationStore",
    "UserDirectory",
    "StoreError",
    "StoreValidationError",
    "InMemoryConversationStore",
    "InMemoryUserDirectory",
]
