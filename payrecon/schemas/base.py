"""Shared schema bases."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class BaseResponse(BaseModel):
    """Response built straight from ORM rows."""

    model_config = ConfigDict(from_attributes=True)


class BaseRequest(BaseModel):
    """Request body accepting snake_case or the dashboard's camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PageResponse(BaseModel, Generic[T]):  # noqa: UP046
    """One page of results with the size of the full result set."""

    items: list[T]
    total: int
    limit: int
    offset: int
