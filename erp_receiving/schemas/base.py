"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
"""

from typing import Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class GRNResponse(BaseResponseSchema):
            id: UUID
            grn_number: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Unknown fields sent by older clients are ignored.
    """
    model_config = ConfigDict(
        extra='ignore',
    )


T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Page of results as returned by the list endpoints."""
    items: List[T]
    total: int
    page: int
    size: int
    pages: int
