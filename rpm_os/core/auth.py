"""JWT verification for clinician access tokens.

Tokens are issued by the auth service; this service only verifies them.
"""

from __future__ import annotations

from typing import Optional

from jose import JWTError, jwt

from rpm_os.config import get_settings

ACCESS_COOKIE = "rpm_access"


def decode_token(token: str) -> dict | None:
    """Decode and validate a JWT. Returns claims dict or None on any error."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return None
