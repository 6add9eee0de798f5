"""
FastAPI Realtime Service Application Factory
============================================

Entry point for the Blueprint-XYZ real-time messaging service: a
WebSocket gateway for direct messages, presence and typing indicators,
plus the messaging REST routes that share its delivery path.

Routers:
    - /realtime/ws        : WebSocket gateway
    - /realtime/*         : Connection stats, presence and typing queries
    - /messages/*         : Conversations and messages (requires valid JWT)
    - /internal/events    : Events pushed by other backend services
    - /health             : Health check endpoint

Environment Variables:
    - JWT_SECRET: Secret shared with the token issuer (required)
    - JWT_ISSUER / JWT_AUDIENCE: Expected token claims
    - ALLOWED_ORIGINS: Comma-separated CORS origins
    - INTERNAL_SHARED_SECRET: Enables /internal/events
    - PRESENCE_BROADCAST_SCOPE: "all" or "partners"
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn blueprint_realtime.main:create_application --factory --reload --port 8080

    Production (single worker; presence and rooms live in process memory):
        uvicorn blueprint_realtime.main:create_application --factory --host 0.0.0.0 --port 8080
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .messaging.routes import router as messages_router
from .messaging.service import MessagingService
from .realtime import RealtimeGateway, internal_router, realtime_router
from .realtime.bridge import init_gateway, reset_gateway
from .realtime.connections import ConnectionManager
from .realtime.presence import PresenceTracker
from .realtime.typing_tracker import TypingTracker
from .store.memory import InMemoryConversationStore, InMemoryUserDirectory
from .store.ports import ConversationStore, UserDirectory

SERVICE_NAME = "blueprint-realtime"
SERVICE_VERSION = "1.0.0"


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def create_application(
    settings: Optional[Settings] = None,
    store: Optional[ConversationStore] = None,
    users: Optional[UserDirectory] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (gateway, idle sweep, bridge registration)
        - CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Overrides get_settings() for this app (tests)
        store: Conversation store, in-memory by default
        users: User directory, in-memory by default

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    store = store if store is not None else InMemoryConversationStore()
    users = users if users is not None else InMemoryUserDirectory()

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("blueprint_realtime.main")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup:
            - Create presence and typing trackers and the gateway
            - Register the gateway with the HTTP bridge
            - Start the presence idle sweep

        Shutdown:
            - Stop the idle sweep
            - Close active WebSocket connections with 1001
            - Clear the bridge
        """
        logger.info(
            "Starting realtime service",
            extra={
                "presence_scope": settings.PRESENCE_BROADCAST_SCOPE,
                "log_level": settings.LOG_LEVEL
            }
        )

        presence = PresenceTracker(
            users,
            idle_threshold_seconds=settings.PRESENCE_IDLE_THRESHOLD_SECONDS,
            sweep_interval_seconds=settings.PRESENCE_SWEEP_INTERVAL_SECONDS,
        )
        manager = ConnectionManager()
        typing = TypingTracker(store, manager)
        gateway = RealtimeGateway(store, users, settings, presence=presence, typing=typing, manager=manager)

        app.state.gateway = init_gateway(gateway)
        await gateway.start()

        logger.info(
            "Realtime service started successfully",
            extra={"service": SERVICE_NAME, "version": SERVICE_VERSION}
        )

        yield

        logger.info("Shutting down realtime service")

        try:
            await gateway.stop()
            logger.info("Stopped gateway and closed all connections")
        except Exception as e:
            logger.error(f"Error stopping gateway: {e}")
        finally:
            app.state.gateway = None
            reset_gateway()

        logger.info("Realtime service shutdown complete")

    app = FastAPI(
        title="Blueprint-XYZ Realtime Service",
        description="WebSocket gateway for direct messaging, presence and typing indicators",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.settings = settings
    app.state.gateway = None
    app.state.messaging = MessagingService(store, users, max_length=settings.MESSAGE_MAX_LENGTH)
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["*"],
    )

    # Mount routers
    app.include_router(realtime_router, prefix="/realtime", tags=["Real-time Communications"])
    app.include_router(messages_router)
    app.include_router(internal_router)

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        """
        Health check endpoint.

        Returns:
            dict: Service health information
        """
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION
        }

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "description": "Real-time messaging gateway",
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "websocket": "/realtime/ws",
                "realtime": "/realtime",
                "messages": "/messages"
            }
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            }
        )

    return app


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        create_application(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
