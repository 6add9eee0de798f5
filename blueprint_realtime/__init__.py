"""
Blueprint-XYZ Realtime Service

WebSocket gateway for direct messaging, presence and typing indicators,
built on FastAPI. See blueprint_realtime.main for the application factory.
"""

__version__ = "1.0.0"
