"""Resolves the authenticated user for reconciliation requests."""

from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrecon.database import get_db
from payrecon.models import User
from payrecon.security import user_id_from_token

# Tokens are issued by the identity service; only verification happens here
bearer_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    token: str = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> UUID:
    user_id = user_id_from_token(token)
    if user_id is None:
        raise _unauthorized("Could not validate credentials")

    owner = await db.scalar(select(User.id).where(User.id == user_id))
    if owner is None:
        raise _unauthorized("Unknown user")
    return user_id
