"""Bearer tokens identifying the user that owns reconciliation data."""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt

from payrecon.config import settings
from payrecon.logger import get_logger

logger = get_logger(__name__)


def create_access_token(user_id: UUID, expires_delta: timedelta | None = None) -> str:
    now = datetime.now(UTC)
    ttl = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {"sub": str(user_id), "iat": now, "exp": now + ttl}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Return the verified claims, or None for an expired or tampered token."""
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Access token expired")
    except jwt.PyJWTError as exc:
        logger.warning("Access token rejected", error=str(exc), error_type=type(exc).__name__)
    return None


def user_id_from_token(token: str) -> UUID | None:
    claims = decode_access_token(token)
    if claims is None:
        return None
    try:
        return UUID(str(claims["sub"]))
    except ValueError:
        logger.warning("Access token subject is not a user id")
        return None
