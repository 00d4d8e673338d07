"""
Base Schemas.

Standard API response schemas shared by every catalog endpoint.
"""

from datetime import datetime, timezone
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    """Return current UTC time as timezone-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


DataT = TypeVar("DataT")


class ResponseMetadata(BaseModel):
    """Metadata included in all API responses."""

    timestamp: datetime = Field(default_factory=utc_now)
    request_id: str | None = None


class ErrorDetail(BaseModel):
    """Error detail structure."""

    code: str
    message: str
    details: dict[str, Any] | None = None


class ApiResponse(BaseModel, Generic[DataT]):
    """
    Standard API response envelope.

    All API responses use this structure for consistency.
    """

    success: bool = True
    data: DataT | None = None
    error: ErrorDetail | None = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)

    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    data: None = None
    error: ErrorDetail
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


class PageMeta(BaseModel):
    """Pagination metadata of a list result."""

    current_page: int
    per_page: int
    total: int
    last_page: int


class ListResult(BaseModel, Generic[DataT]):
    """Rows of one page plus its pagination metadata."""

    rows: list[DataT]
    meta: PageMeta


class ShowMeta(BaseModel):
    """What a single-record read loaded alongside the record."""

    loaded_relations: list[str] = Field(default_factory=list)
    loaded_counts: list[str] = Field(default_factory=list)


class ShowResult(BaseModel, Generic[DataT]):
    """One record plus what was loaded with it."""

    item: DataT
    meta: ShowMeta


class ActiveUpdate(BaseModel):
    """Schema for toggling the active flag."""

    active: bool = Field(description="New value of the active flag")


class BulkAction(BaseModel):
    """
    Schema for a bulk mutation.

    Exactly one of `ids` or `uuids` must be given; `active` is required
    for `set_active`.
    """

    action: Literal["delete", "force_delete", "restore", "set_active"]
    ids: list[int] | None = None
    uuids: list[str] | None = None
    active: bool | None = None

    @model_validator(mode="after")
    def _check_targets(self) -> "BulkAction":
        if (self.ids is None) == (self.uuids is None):
            raise ValueError("Provide exactly one of ids or uuids")
        if self.action == "set_active" and self.active is None:
            raise ValueError("active is required for set_active")
        return self


class BulkResult(BaseModel):
    action: str
    affected: int


class DeleteResult(BaseModel):
    id: int
    done: bool
