"""Request dependencies shared by the routers.

Usage:
    from payrecon.deps import CurrentUserId, DbSession, Pagination

    async def my_endpoint(db: DbSession, user_id: CurrentUserId, page: Pagination):
        ...
"""

from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payrecon.auth import get_current_user_id
from payrecon.database import get_db

MAX_PAGE_SIZE = 200


@dataclass
class PageParams:
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE)
    offset: int = Query(default=0, ge=0)


DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
Pagination = Annotated[PageParams, Depends()]

__all__ = ["CurrentUserId", "DbSession", "PageParams", "Pagination"]
