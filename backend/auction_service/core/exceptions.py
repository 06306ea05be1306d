"""
Error taxonomy for the bidding service.

Service errors carry a stable ``code`` that callers branch on and a
human-readable ``message`` meant for display. Store errors are raised by
store implementations and translated by the service.
"""

from decimal import Decimal
from enum import Enum
from typing import Any


class RejectionReason(str, Enum):
    NOT_FOUND = "not_found"
    AUCTION_CLOSED = "auction_closed"
    SELF_BID = "self_bid"
    INVALID_AMOUNT = "invalid_amount"
    BID_TOO_LOW = "bid_too_low"


class AuctionServiceError(Exception):
    """Base class for errors surfaced to callers of the bidding service."""

    code: str = "error"
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


class BidRejected(AuctionServiceError):
    """A bid failed validation. Never retried by the service."""

    def __init__(
        self,
        reason: RejectionReason,
        message: str,
        current_price: Decimal | None = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.code = reason.value
        self.current_price = current_price

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.current_price is not None:
            data["current_price"] = str(self.current_price)
        return data


class AuctionNotFound(AuctionServiceError):
    code = "not_found"


class InvalidAuction(AuctionServiceError):
    code = "invalid_auction"


class AuctionStillActive(AuctionServiceError):
    code = "auction_active"


class AuctionNotActive(AuctionServiceError):
    code = "auction_closed"


class ServiceBusy(AuctionServiceError):
    """Concurrent writers kept winning the race; try again shortly."""

    code = "busy"
    retryable = True


class ServiceUnavailable(AuctionServiceError):
    """The store failed transiently or timed out. Nothing was written."""

    code = "unavailable"
    retryable = True


class StoreError(Exception):
    pass


class NotFoundError(StoreError):
    pass


class ConflictError(StoreError):
    """Lost a race on an atomic update; re-read and retry."""


class StoreUnavailable(StoreError):
    pass
