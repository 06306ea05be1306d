"""
Events published by the bidding service.

Each event is routed to a single topic: events addressed to a user go to
``user:<id>``, auction creation goes to the global ``auctions`` feed and
everything else to ``auction:<id>``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter

AUCTIONS_TOPIC = "auctions"


def auction_topic(auction_id: UUID) -> str:
    return f"auction:{auction_id}"


def user_topic(user_id: UUID) -> str:
    return f"user:{user_id}"


class AuctionEvent(BaseModel):
    auction_id: UUID
    recipient_id: UUID | None = Field(
        None, description="Set when the event is addressed to one user"
    )
    occurred_at: datetime

    @property
    def topic(self) -> str:
        if self.recipient_id is not None:
            return user_topic(self.recipient_id)
        return auction_topic(self.auction_id)


class AuctionCreated(AuctionEvent):
    type: Literal["auction_created"] = "auction_created"
    seller_id: UUID
    title: str
    starting_price: Decimal
    end_time: datetime

    @property
    def topic(self) -> str:
        return AUCTIONS_TOPIC


class BidAccepted(AuctionEvent):
    type: Literal["bid_accepted"] = "bid_accepted"
    bid_id: UUID
    bidder_id: UUID
    amount: Decimal


class BidOutbid(AuctionEvent):
    type: Literal["bid_outbid"] = "bid_outbid"
    bid_id: UUID
    amount: Decimal = Field(..., description="The superseded bid's amount")
    new_price: Decimal


class AuctionEnded(AuctionEvent):
    type: Literal["auction_ended"] = "auction_ended"
    winner_id: UUID | None = None
    final_price: Decimal
    reserve_met: bool | None = None


class AuctionCancelled(AuctionEvent):
    type: Literal["auction_cancelled"] = "auction_cancelled"


Event = Annotated[
    Union[AuctionCreated, BidAccepted, BidOutbid, AuctionEnded, AuctionCancelled],
    Field(discriminator="type"),
]

event_adapter: TypeAdapter[Event] = TypeAdapter(Event)
