"""
Pydantic schemas for auctions.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from auction_service.core.clock import ensure_utc
from auction_service.models.enums import AuctionStatus
from auction_service.schemas.bid import BidSchema


class AuctionCreate(BaseModel):
    """Request schema for listing a new auction"""

    title: str = Field(..., min_length=1, max_length=200, description="Listing title")
    description: str | None = Field(None, max_length=2000)
    seller_id: UUID = Field(..., description="User listing the item")
    category_id: UUID | None = None
    starting_price: Decimal = Field(
        ..., gt=0, max_digits=12, decimal_places=2, description="Opening price"
    )
    reserve_price: Decimal | None = Field(
        None,
        ge=0,
        max_digits=12,
        decimal_places=2,
        description="Hidden minimum the seller will accept",
    )
    end_time: datetime = Field(..., description="When bidding closes (UTC)")

    @field_validator("end_time")
    @classmethod
    def _end_time_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "Vintage film camera",
                "description": "Fully working, with original case",
                "seller_id": "123e4567-e89b-12d3-a456-426614174000",
                "starting_price": "100.00",
                "reserve_price": "150.00",
                "end_time": "2026-12-02T11:00:00Z",
            }
        }
    }


class AuctionSchema(BaseModel):
    """Authoritative auction state"""

    id: UUID
    title: str
    description: str | None = None
    seller_id: UUID
    category_id: UUID | None = None
    starting_price: Decimal
    current_price: Decimal
    reserve_price: Decimal | None = None
    end_time: datetime
    status: AuctionStatus
    winner_id: UUID | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("end_time", "created_at", "updated_at")
    @classmethod
    def _timestamps_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    model_config = {"from_attributes": True}


class AuctionListing(AuctionSchema):
    """Auction as shown in browse results"""

    bid_count: int = Field(0, description="Number of bids placed")


class AuctionDetail(AuctionSchema):
    """Auction with its full bid history, highest first"""

    bids: list[BidSchema] = Field(default_factory=list)
    bid_count: int = Field(0, description="Number of bids placed")


class AuctionFilters(BaseModel):
    """Browse filters, mirroring the storefront's search panel"""

    search: str | None = Field(None, description="Match on title or description")
    category_id: UUID | None = None
    seller_id: UUID | None = None
    winner_id: UUID | None = None
    status: AuctionStatus | None = None
    min_price: Decimal | None = Field(None, ge=0)
    max_price: Decimal | None = Field(None, ge=0)
    ends_before: datetime | None = None
    sort_by: Literal["created_at", "end_time", "current_price", "title"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = Field(50, ge=1, le=100)
    offset: int = Field(0, ge=0)

    @field_validator("ends_before")
    @classmethod
    def _ends_before_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class SettlementResult(BaseModel):
    """Final outcome of an auction"""

    auction_id: UUID
    status: AuctionStatus
    winner_id: UUID | None = None
    winning_bid_id: UUID | None = None
    final_price: Decimal
    reserve_met: bool | None = Field(
        None, description="None when the auction has no reserve price"
    )
    settled: bool = Field(
        False, description="True only for the call that performed the settlement"
    )
