"""
Access-token verification.

Tokens are issued by the identity service; this service only holds the
public key and checks signature, expiry and token type.
"""

from typing import Optional

from jose import JWTError, jwt
import structlog

from procurement.config import settings

logger = structlog.get_logger()

_public_key: Optional[str] = None


def _load_public_key() -> str:
    global _public_key
    if _public_key is None:
        with open(settings.JWT_PUBLIC_KEY_PATH, "r") as f:
            _public_key = f.read()
        logger.info("jwt_public_key_loaded", path=settings.JWT_PUBLIC_KEY_PATH)
    return _public_key


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token. Raises JWTError on failure."""
    return jwt.decode(token, _load_public_key(), algorithms=[settings.JWT_ALGORITHM])


def verify_access_token(token: str) -> dict:
    """Verify an access token and return its claims."""
    payload = decode_token(token)
    if payload.get("type", "access") != "access":
        raise JWTError("Not an access token")
    if not payload.get("sub") or not payload.get("role"):
        raise JWTError("Token is missing required claims")
    return payload
