"""
Messaging Module
================

Conversation and message operations shared by the socket gateway and
the REST routes (see messaging.routes).
"""

from .service import ConversationAccessError, MessagingError, MessagingService

__all__ = ["MessagingService", "MessagingError", "ConversationAccessError"]
