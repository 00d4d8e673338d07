"""
Catalog Schemas.

Pydantic schemas for bank, market and local request/response validation.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _CatalogResponse(BaseModel):
    id: int = Field(description="Primary key")
    uuid: str = Field(description="Public unique identifier")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Bank
# =============================================================================


class BankCreate(BaseModel):
    """Schema for creating a bank."""

    code: str = Field(..., min_length=1, max_length=20, examples=["BNA"])
    name: str = Field(..., min_length=1, max_length=255, examples=["Banco de la Nacion"])
    is_active: bool = True


class BankUpdate(BaseModel):
    """Schema for updating a bank. Omitted fields are left unchanged."""

    code: str | None = Field(default=None, min_length=1, max_length=20)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    is_active: bool | None = None
    expected_updated_at: datetime | None = Field(
        default=None,
        description="Reject the update if the record changed since this timestamp",
    )


class BankResponse(_CatalogResponse):
    code: str
    name: str
    is_active: bool
    deleted_at: datetime | None = None


# =============================================================================
# Market
# =============================================================================


class MarketCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=255)
    address: str | None = Field(default=None, max_length=255)
    is_active: bool = True


class MarketUpdate(BaseModel):
    code: str | None = Field(default=None, min_length=1, max_length=20)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    address: str | None = Field(default=None, max_length=255)
    is_active: bool | None = None
    expected_updated_at: datetime | None = None


class MarketResponse(_CatalogResponse):
    code: str
    name: str
    address: str | None = None
    is_active: bool
    deleted_at: datetime | None = None
    locals_count: int | None = None
    locals: list["LocalResponse"] | None = None


# =============================================================================
# Local
# =============================================================================


class LocalCreate(BaseModel):
    market_id: int
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=255)
    monthly_rent: int = Field(default=0, ge=0)
    active: bool = True


class LocalUpdate(BaseModel):
    market_id: int | None = None
    code: str | None = Field(default=None, min_length=1, max_length=20)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    monthly_rent: int | None = Field(default=None, ge=0)
    active: bool | None = None
    expected_updated_at: datetime | None = None


class LocalResponse(_CatalogResponse):
    market_id: int
    code: str
    name: str
    monthly_rent: int
    active: bool
    market: MarketResponse | None = None


MarketResponse.model_rebuild()
