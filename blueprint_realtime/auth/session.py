"""
Access Token Verification Module
================================

The identity verifier used by both HTTP requests and socket handshakes.
Access tokens are HMAC-signed JWTs issued by the Blueprint-XYZ auth
service; this module only verifies them (minting is kept for tooling and
tests).

Claims carried by a token:
- id: user identifier
- username, email
- subscriptionTier
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from fastapi import Depends, Header, HTTPException, status
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..models import Identity

logger = logging.getLogger("blueprint_realtime.auth.session")

REQUIRED_CLAIMS = ["exp", "iat", "id", "username", "email"]


# =============================================================================
# Exceptions
# =============================================================================

class CredentialError(Exception):
    """Base exception for credential verification failures"""
    pass


class InvalidCredentialError(CredentialError):
    """Token is malformed, has a bad signature or is missing claims"""
    pass


class ExpiredCredentialError(CredentialError):
    """Token signature has expired"""
    pass


# =============================================================================
# Token Creation
# =============================================================================

def create_access_token(
    identity: Identity,
    expires_in_minutes: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> str:
    """
    Create an access token for an identity.

    Args:
        identity: Identity whose claims are embedded
        expires_in_minutes: Optional custom expiry (overrides settings)
        settings: Optional settings (defaults to get_settings())

    Returns:
        Encoded JWT string
    """
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    minutes = expires_in_minutes if expires_in_minutes is not None else settings.JWT_EXPIRY_MINUTES

    payload = {
        "id": identity.user_id,
        "username": identity.username,
        "email": identity.email,
        "subscriptionTier": identity.tier,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
    }

    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


# =============================================================================
# Token Verification
# =============================================================================

def verify_access_token(token: str, settings: Optional[Settings] = None) -> Identity:
    """
    Verify an access token and return the identity it carries.

    Args:
        token: JWT string to verify
        settings: Optional settings (defaults to get_settings())

    Returns:
        Verified Identity

    Raises:
        ExpiredCredentialError: If the token has expired
        InvalidCredentialError: For any other verification failure
    """
    if not token:
        raise InvalidCredentialError("No authentication token provided")

    settings = settings or get_settings()

    try:
        decoded: Dict[str, Any] = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            options={"require": REQUIRED_CLAIMS},
        )
    except ExpiredSignatureError as e:
        logger.info("Access token expired")
        raise ExpiredCredentialError("Token has expired") from e
    except InvalidTokenError as e:
        logger.warning(f"Invalid access token: {e}")
        raise InvalidCredentialError("Invalid token") from e

    try:
        return Identity(
            user_id=str(decoded["id"]),
            username=decoded["username"],
            email=decoded["email"],
            tier=decoded.get("subscriptionTier") or "free",
        )
    except ValidationError as e:
        logger.warning(f"Access token carries malformed identity claims: {e}")
        raise InvalidCredentialError("Invalid token claims") from e


# =============================================================================
# Helper Functions
# =============================================================================

def extract_token_from_header(authorization: Optional[str]) -> str:
    """
    Extract Bearer token from Authorization header.

    Raises:
        InvalidCredentialError: If header is missing or malformed
    """
    if not authorization:
        raise InvalidCredentialError("Missing Authorization header")

    parts = authorization.split()

    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise InvalidCredentialError(
            "Invalid Authorization header format. Expected: 'Bearer <token>'"
        )

    return parts[1]


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_current_identity(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Identity:
    """
    FastAPI dependency to extract and verify the caller's access token.

    Usage in routes:
        @router.get("/protected")
        async def protected_route(identity: Identity = Depends(get_current_identity)):
            return {"userId": identity.user_id}

    Raises:
        HTTPException: 401 if authentication fails
    """
    try:
        token = extract_token_from_header(authorization)
        return verify_access_token(token, settings)
    except CredentialError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


__all__ = [
    "create_access_token",
    "verify_access_token",
    "extract_token_from_header",
    "get_current_identity",
    "CredentialError",
    "InvalidCredentialError",
    "ExpiredCredentialError",
]
