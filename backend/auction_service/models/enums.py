from enum import Enum


class AuctionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class BidStatus(str, Enum):
    ACTIVE = "active"
    WINNING = "winning"
    OUTBID = "outbid"
    WON = "won"
    LOST = "lost"


class BidOrder(str, Enum):
    AMOUNT_DESC = "amount_desc"
    CREATED_ASC = "created_asc"
    CREATED_DESC = "created_desc"


class ReservePolicy(str, Enum):
    """Whether settlement honours the seller's reserve price."""

    IGNORE = "ignore"
    ENFORCE = "enforce"
