"""
Pydantic schemas for bidding operations.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from auction_service.core.clock import ensure_utc
from auction_service.models.enums import BidStatus


class BidCreate(BaseModel):
    """Request schema for placing a bid"""

    bidder_id: UUID = Field(..., description="User placing the bid")
    # Range checks live in the service so rejections carry a reason code
    amount: Decimal = Field(..., description="Offered amount")

    model_config = {
        "json_schema_extra": {
            "example": {
                "bidder_id": "123e4567-e89b-12d3-a456-426614174000",
                "amount": "110.00",
            }
        }
    }


class BidSchema(BaseModel):
    """Schema for a recorded bid"""

    id: UUID
    auction_id: UUID
    bidder_id: UUID
    amount: Decimal
    status: BidStatus
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    model_config = {"from_attributes": True}
