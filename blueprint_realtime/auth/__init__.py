"""
Authentication Package

Verifies Blueprint-XYZ access tokens for HTTP requests and socket
handshakes. Token issuance and password handling live in the main API.

Modules:
- session: access token verification, header parsing, FastAPI dependency
"""

from .session import (
    CredentialError,
    ExpiredCredentialError,
    InvalidCredentialError,
    get_current_identity,
    verify_access_token,
)

__all__ = [
    "CredentialError",
    "ExpiredCredentialError",
    "InvalidCredentialError",
    "get_current_identity",
    "verify_access_token",
]
