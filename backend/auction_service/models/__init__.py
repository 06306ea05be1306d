"""
SQLAlchemy ORM Models

All database models unified export point
"""

from auction_service.models.auction import Auction
from auction_service.models.bid import Bid
from auction_service.models.enums import (
    AuctionStatus,
    BidOrder,
    BidStatus,
    ReservePolicy,
)

__all__ = [
    "Auction",
    "Bid",
    "AuctionStatus",
    "BidStatus",
    "BidOrder",
    "ReservePolicy",
]
