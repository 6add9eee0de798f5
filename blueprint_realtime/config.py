"""
Configuration module for the Blueprint-XYZ realtime service.

This module uses Pydantic Settings to load and validate environment variables
for token verification, the WebSocket gateway, presence tracking and CORS.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Token verification, gateway keep-alive, presence heuristics and HTTP
    policies are all defined here.
    """

    # =========================================================================
    # Access Token Verification
    # =========================================================================

    JWT_SECRET: str = Field(
        ...,
        description="Secret used to verify (and, for tooling, sign) access tokens",
        min_length=16,
    )

    JWT_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm (HS256, HS384 or HS512)",
    )

    JWT_ISSUER: str = Field(
        default="blueprint-xyz",
        description="Expected 'iss' claim of access tokens",
    )

    JWT_AUDIENCE: str = Field(
        default="blueprint-xyz-users",
        description="Expected 'aud' claim of access tokens",
    )

    JWT_EXPIRY_MINUTES: int = Field(
        default=60 * 24 * 7,
        description="Lifetime of tokens minted by create_access_token",
        ge=1,
    )

    # =========================================================================
    # Internal Event Bridge
    # =========================================================================

    INTERNAL_SHARED_SECRET: Optional[str] = Field(
        None,
        description="Shared secret for backend services pushing events through /internal/events",
        min_length=16,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the realtime server",
    )

    PORT: int = Field(
        default=3000,
        description="Port to bind the realtime server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        default="http://localhost:3001",
        description="Comma-separated list of allowed CORS origins",
    )

    # =========================================================================
    # Gateway / Presence
    # =========================================================================

    WS_PING_INTERVAL_SECONDS: float = Field(
        default=25.0,
        description="Interval between keep-alive ping frames",
        gt=0,
    )

    PRESENCE_SWEEP_INTERVAL_SECONDS: float = Field(
        default=60.0,
        description="How often idle connections are checked",
        gt=0,
    )

    PRESENCE_IDLE_THRESHOLD_SECONDS: float = Field(
        default=300.0,
        description="Inactivity after which an online user is demoted to away",
        gt=0,
    )

    PRESENCE_BROADCAST_SCOPE: str = Field(
        default="all",
        description="Audience of online/offline events: 'all' connections or conversation 'partners'",
    )

    MESSAGE_MAX_LENGTH: int = Field(
        default=1000,
        description="Maximum message length in characters",
        ge=1,
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Raises:
            ValueError: If algorithm is not supported
        """
        allowed_algorithms = ["HS256", "HS384", "HS512"]

        if v not in allowed_algorithms:
            raise ValueError(
                f"JWT algorithm must be one of {allowed_algorithms}, got: {v}"
            )

        return v

    @field_validator("PRESENCE_BROADCAST_SCOPE")
    @classmethod
    def validate_broadcast_scope(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("all", "partners"):
            raise ValueError(
                f"PRESENCE_BROADCAST_SCOPE must be 'all' or 'partners', got: {v}"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so the environment is read only once during the application
    lifecycle.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()
