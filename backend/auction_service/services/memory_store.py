"""In-process auction store, serialized per auction with asyncio locks."""

import asyncio
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from auction_service.core.exceptions import ConflictError, NotFoundError
from auction_service.models.enums import AuctionStatus, BidOrder, BidStatus
from auction_service.schemas.auction import AuctionFilters, AuctionSchema
from auction_service.schemas.bid import BidSchema
from auction_service.services.store import AuctionStore, AuctionTransaction, Mutator, T


def matches_filters(auction: AuctionSchema, filters: AuctionFilters) -> bool:
    if filters.status is not None and auction.status != filters.status:
        return False
    if filters.seller_id is not None and auction.seller_id != filters.seller_id:
        return False
    if filters.winner_id is not None and auction.winner_id != filters.winner_id:
        return False
    if filters.category_id is not None and auction.category_id != filters.category_id:
        return False
    if filters.min_price is not None and auction.current_price < filters.min_price:
        return False
    if filters.max_price is not None and auction.current_price > filters.max_price:
        return False
    if filters.ends_before is not None and auction.end_time > filters.ends_before:
        return False
    if filters.search:
        needle = filters.search.lower()
        haystack = f"{auction.title}\n{auction.description or ''}".lower()
        if needle not in haystack:
            return False
    return True


def sort_bids(bids: list[BidSchema], order: BidOrder) -> list[BidSchema]:
    if order is BidOrder.AMOUNT_DESC:
        return sorted(bids, key=lambda bid: (-bid.amount, bid.created_at))
    return sorted(
        bids, key=lambda bid: bid.created_at, reverse=order is BidOrder.CREATED_DESC
    )


class _MemoryTransaction(AuctionTransaction):
    def __init__(self, store: "InMemoryAuctionStore", auction: AuctionSchema):
        self._store = store
        self.auction = auction
        self._changes: dict[str, Any] = {}
        self._inserted: dict[UUID, BidSchema] = {}
        self._statuses: dict[UUID, BidStatus] = {}

    def _current_bids(self) -> list[BidSchema]:
        bids = [
            bid
            for bid in self._store._bids.values()
            if bid.auction_id == self.auction.id
        ]
        bids.extend(self._inserted.values())
        return [
            bid.model_copy(update={"status": self._statuses[bid.id]})
            if bid.id in self._statuses
            else bid
            for bid in bids
        ]

    async def winning_bid(self) -> BidSchema | None:
        for bid in self._current_bids():
            if bid.status is BidStatus.WINNING:
                return bid
        return None

    async def list_bids(
        self, statuses: Iterable[BidStatus] | None = None
    ) -> list[BidSchema]:
        wanted = set(statuses) if statuses is not None else None
        bids = [
            bid
            for bid in self._current_bids()
            if wanted is None or bid.status in wanted
        ]
        return sort_bids(bids, BidOrder.AMOUNT_DESC)

    async def insert_bid(self, bid: BidSchema) -> BidSchema:
        if bid.id in self._store._bids or bid.id in self._inserted:
            raise ConflictError(f"Bid {bid.id} already exists")
        if bid.status is BidStatus.WINNING and await self.winning_bid() is not None:
            raise ConflictError(f"Auction {self.auction.id} already has a winning bid")
        self._inserted[bid.id] = bid
        return bid

    async def update_bid_status(self, bid_id: UUID, status: BidStatus) -> None:
        if bid_id in self._inserted:
            self._inserted[bid_id] = self._inserted[bid_id].model_copy(
                update={"status": status}
            )
            return
        bid = self._store._bids.get(bid_id)
        if bid is None or bid.auction_id != self.auction.id:
            raise NotFoundError(f"Bid {bid_id} not found")
        self._statuses[bid_id] = status

    def update_auction(self, **changes: Any) -> AuctionSchema:
        self._changes.update(changes)
        self.auction = self.auction.model_copy(update=changes)
        return self.auction

    def commit(self) -> None:
        store = self._store
        for bid_id, status in self._statuses.items():
            store._bids[bid_id] = store._bids[bid_id].model_copy(
                update={"status": status}
            )
        store._bids.update(self._inserted)
        if self._changes or self._inserted or self._statuses:
            store._auctions[self.auction.id] = self.auction.model_copy(
                update={"updated_at": datetime.now(timezone.utc)}
            )


class InMemoryAuctionStore(AuctionStore):
    """
    Dict-backed store for single-process deployments and tests.

    ``latency`` adds an await to every call so that concurrent callers
    interleave the way they would against a remote database.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._auctions: dict[UUID, AuctionSchema] = {}
        self._bids: dict[UUID, BidSchema] = {}
        self._locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _pause(self) -> None:
        await asyncio.sleep(self.latency)

    async def get_auction(self, auction_id: UUID) -> AuctionSchema:
        await self._pause()
        auction = self._auctions.get(auction_id)
        if auction is None:
            raise NotFoundError(f"Auction {auction_id} not found")
        return auction.model_copy()

    async def create_auction(self, auction: AuctionSchema) -> AuctionSchema:
        await self._pause()
        if auction.id in self._auctions:
            raise ConflictError(f"Auction {auction.id} already exists")
        self._auctions[auction.id] = auction.model_copy()
        return auction

    async def list_auctions(self, filters: AuctionFilters) -> list[AuctionSchema]:
        await self._pause()
        found = [a for a in self._auctions.values() if matches_filters(a, filters)]
        found.sort(
            key=lambda a: (getattr(a, filters.sort_by), str(a.id)),
            reverse=filters.sort_order == "desc",
        )
        return [
            a.model_copy()
            for a in found[filters.offset : filters.offset + filters.limit]
        ]

    async def count_bids(self, auction_ids: Sequence[UUID]) -> dict[UUID, int]:
        await self._pause()
        counts = {auction_id: 0 for auction_id in auction_ids}
        for bid in self._bids.values():
            if bid.auction_id in counts:
                counts[bid.auction_id] += 1
        return counts

    async def list_bids(
        self,
        *,
        auction_id: UUID | None = None,
        bidder_id: UUID | None = None,
        statuses: Iterable[BidStatus] | None = None,
        order: BidOrder = BidOrder.AMOUNT_DESC,
    ) -> list[BidSchema]:
        await self._pause()
        wanted = set(statuses) if statuses is not None else None
        bids = [
            bid
            for bid in self._bids.values()
            if (auction_id is None or bid.auction_id == auction_id)
            and (bidder_id is None or bid.bidder_id == bidder_id)
            and (wanted is None or bid.status in wanted)
        ]
        return sort_bids(bids, order)

    async def update_auction_atomic(
        self,
        auction_id: UUID,
        expected_status: AuctionStatus,
        mutator: Mutator[T],
    ) -> T:
        async with self._locks[auction_id]:
            await self._pause()
            auction = self._auctions.get(auction_id)
            if auction is None:
                raise NotFoundError(f"Auction {auction_id} not found")
            if auction.status != expected_status:
                raise ConflictError(
                    f"Auction {auction_id} is {auction.status.value}, "
                    f"expected {expected_status.value}"
                )
            tx = _MemoryTransaction(self, auction.model_copy())
            result = await mutator(tx)
            # No awaits past this point: the commit cannot be interrupted
            tx.commit()
            return result
