"""
Base Schema Classes for Pydantic Models

Every endpoint answers with the same envelope:

    {"success": true, "data": ..., "message": "..."}
    {"success": false, "error": "...", "message": "..."}

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
"""

import math
from datetime import datetime
from typing import Generic, List, Optional, TypeVar
from uuid import UUID
from pydantic import BaseModel, ConfigDict

DataT = TypeVar("DataT")


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class AffiliateLinkResponse(BaseResponseSchema):
            id: UUID
            link_code: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Serialize UUIDs as strings in JSON output
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    No from_attributes needed since these don't read from ORM.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


class APIResponse(BaseModel, Generic[DataT]):
    """Success envelope."""
    success: bool = True
    data: Optional[DataT] = None
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope."""
    success: bool = False
    error: str
    code: Optional[str] = None
    message: Optional[str] = None


class PaginatedList(BaseModel, Generic[DataT]):
    """Paginated listing."""
    items: List[DataT]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, items, total: int, page: int, page_size: int) -> "PaginatedList":
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if page_size else 0,
        )
