"""
Persistence contract for auctions and bids.

A store persists what the bidding service tells it and enforces identifier
uniqueness; it makes no business decisions. All multi-step writes go through
``update_auction_atomic``, which hands the caller an ``AuctionTransaction``
whose writes are committed together or not at all.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, TypeVar
from uuid import UUID

from auction_service.models.enums import AuctionStatus, BidOrder, BidStatus
from auction_service.schemas.auction import AuctionFilters, AuctionSchema
from auction_service.schemas.bid import BidSchema

T = TypeVar("T")


class AuctionTransaction(ABC):
    """Unit of work over a single auction, holding it exclusively."""

    auction: AuctionSchema

    @abstractmethod
    async def winning_bid(self) -> BidSchema | None: ...

    @abstractmethod
    async def list_bids(
        self, statuses: Iterable[BidStatus] | None = None
    ) -> list[BidSchema]: ...

    @abstractmethod
    async def insert_bid(self, bid: BidSchema) -> BidSchema: ...

    @abstractmethod
    async def update_bid_status(self, bid_id: UUID, status: BidStatus) -> None: ...

    @abstractmethod
    def update_auction(self, **changes: Any) -> AuctionSchema:
        """Stage auction field changes; visible through ``self.auction`` at once."""


Mutator = Callable[[AuctionTransaction], Awaitable[T]]


class AuctionStore(ABC):
    @abstractmethod
    async def get_auction(self, auction_id: UUID) -> AuctionSchema:
        """Raises NotFoundError."""

    @abstractmethod
    async def create_auction(self, auction: AuctionSchema) -> AuctionSchema: ...

    @abstractmethod
    async def list_auctions(self, filters: AuctionFilters) -> list[AuctionSchema]: ...

    @abstractmethod
    async def count_bids(self, auction_ids: Sequence[UUID]) -> dict[UUID, int]: ...

    @abstractmethod
    async def list_bids(
        self,
        *,
        auction_id: UUID | None = None,
        bidder_id: UUID | None = None,
        statuses: Iterable[BidStatus] | None = None,
        order: BidOrder = BidOrder.AMOUNT_DESC,
    ) -> list[BidSchema]: ...

    @abstractmethod
    async def update_auction_atomic(
        self,
        auction_id: UUID,
        expected_status: AuctionStatus,
        mutator: Mutator[T],
    ) -> T:
        """
        Run ``mutator`` against the auction and commit its writes atomically.

        Raises:
            NotFoundError: the auction does not exist
            ConflictError: the auction is not in ``expected_status`` or a
                concurrent writer committed first
            StoreUnavailable: transient backend failure; nothing was written

        Any exception raised by ``mutator`` discards its staged writes and
        propagates unchanged.
        """
