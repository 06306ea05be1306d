import asyncio
import random
from decimal import Decimal
from uuid import uuid4

import pytest

from auction_service.core.exceptions import (
    BidRejected,
    ConflictError,
    RejectionReason,
    ServiceBusy,
    ServiceUnavailable,
    StoreUnavailable,
)
from auction_service.models.enums import AuctionStatus, BidStatus
from auction_service.schemas.events import AuctionEnded, auction_topic
from auction_service.services.bidding_service import BiddingService
from auction_service.services.memory_store import InMemoryAuctionStore


async def winning_bids(store, auction_id):
    return await store.list_bids(auction_id=auction_id, statuses=[BidStatus.WINNING])


async def test_concurrent_bids_keep_single_winner(clock, notifier, make_auction):
    store = InMemoryAuctionStore(latency=0.001)
    service = BiddingService(store, notifier, clock)
    auction = await make_auction(service=service)

    rng = random.Random(7)
    amounts = [Decimal(rng.randint(10100, 20000)) / 100 for _ in range(40)]
    results = await asyncio.gather(
        *(service.place_bid(auction.id, uuid4(), amount) for amount in amounts),
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert all(
        isinstance(r, BidRejected) and r.reason is RejectionReason.BID_TOO_LOW
        for r in rejected
    )

    final = await store.get_auction(auction.id)
    assert final.current_price == max(amounts)
    assert final.current_price == max(bid.amount for bid in accepted)

    (winner,) = await winning_bids(store, auction.id)
    assert winner.amount == max(amounts)
    assert len(await store.list_bids(auction_id=auction.id)) == len(accepted)


async def test_concurrent_equal_bids_admit_exactly_one(clock, notifier, make_auction):
    store = InMemoryAuctionStore(latency=0.001)
    service = BiddingService(store, notifier, clock)
    auction = await make_auction(service=service)

    results = await asyncio.gather(
        *(service.place_bid(auction.id, uuid4(), "150.00") for _ in range(10)),
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    assert len(accepted) == 1
    assert all(
        r.reason is RejectionReason.BID_TOO_LOW
        for r in results
        if isinstance(r, BidRejected)
    )
    assert len(await winning_bids(store, auction.id)) == 1


async def test_winner_observed_during_bidding_is_unique(clock, notifier, make_auction):
    store = InMemoryAuctionStore(latency=0.001)
    service = BiddingService(store, notifier, clock)
    auction = await make_auction(service=service)
    observed = []

    async def observe():
        for _ in range(30):
            observed.append(len(await winning_bids(store, auction.id)))

    async def bid(step):
        try:
            await service.place_bid(auction.id, uuid4(), Decimal(100 + step))
        except BidRejected:
            pass

    await asyncio.gather(observe(), *(bid(step) for step in range(1, 31)))

    assert set(observed) <= {0, 1}
    assert observed[-1] == 1


class ConflictingStore(InMemoryAuctionStore):
    """Loses the atomic update race a fixed number of times."""

    def __init__(self, conflicts):
        super().__init__()
        self.conflicts = conflicts
        self.attempts = 0

    async def update_auction_atomic(self, auction_id, expected_status, mutator):
        self.attempts += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConflictError("lost the race")
        return await super().update_auction_atomic(auction_id, expected_status, mutator)


async def test_conflicts_are_retried(clock, notifier, make_auction):
    store = ConflictingStore(conflicts=2)
    service = BiddingService(store, notifier, clock, max_retries=3)
    auction = await make_auction(service=service)

    bid = await service.place_bid(auction.id, uuid4(), "105.00")

    assert bid.status is BidStatus.WINNING
    assert store.attempts == 3


async def test_exhausted_retries_surface_busy(clock, notifier, make_auction):
    store = ConflictingStore(conflicts=3)
    service = BiddingService(store, notifier, clock, max_retries=3)
    auction = await make_auction(service=service)

    with pytest.raises(ServiceBusy) as exc_info:
        await service.place_bid(auction.id, uuid4(), "105.00")

    assert exc_info.value.retryable
    assert await store.list_bids(auction_id=auction.id) == []


async def test_closed_rejection_survives_failed_settlement(
    clock, notifier, make_auction, caplog
):
    store = ConflictingStore(conflicts=100)
    service = BiddingService(store, notifier, clock, max_retries=3)
    auction = await make_auction(service=service)
    clock.advance(hours=1)

    with pytest.raises(BidRejected) as exc_info:
        await service.place_bid(auction.id, uuid4(), "105.00")

    assert exc_info.value.reason is RejectionReason.AUCTION_CLOSED
    assert store.attempts == 3
    assert (await store.get_auction(auction.id)).status is AuctionStatus.ACTIVE
    assert "Could not settle closed auction" in caplog.text


async def test_retry_revalidates_against_fresh_state(clock, notifier, make_auction):
    store = ConflictingStore(conflicts=0)
    service = BiddingService(store, notifier, clock)
    auction = await make_auction(service=service)
    rival = uuid4()

    original = store.update_auction_atomic

    async def rival_wins_first(auction_id, expected_status, mutator):
        # A competing bid commits while this caller is between read and write
        store.update_auction_atomic = original
        await service.place_bid(auction_id, rival, "120.00")
        raise ConflictError("lost the race")

    store.update_auction_atomic = rival_wins_first

    with pytest.raises(BidRejected) as exc_info:
        await service.place_bid(auction.id, uuid4(), "110.00")

    assert exc_info.value.reason is RejectionReason.BID_TOO_LOW
    assert exc_info.value.current_price == Decimal("120.00")
    (winner,) = await winning_bids(store, auction.id)
    assert winner.bidder_id == rival


class StallingStore(InMemoryAuctionStore):
    """Stages the mutation, then stalls before committing it."""

    async def update_auction_atomic(self, auction_id, expected_status, mutator):
        async def stalled(tx):
            result = await mutator(tx)
            await asyncio.sleep(1)
            return result

        return await super().update_auction_atomic(auction_id, expected_status, stalled)


async def test_timeout_is_retryable_and_writes_nothing(clock, notifier, make_auction):
    store = StallingStore()
    service = BiddingService(store, notifier, clock, store_timeout=0.05)
    auction = await make_auction(service=service)

    with pytest.raises(ServiceUnavailable) as exc_info:
        await service.place_bid(auction.id, uuid4(), "105.00")

    assert exc_info.value.retryable
    assert await store.list_bids(auction_id=auction.id) == []
    assert (await store.get_auction(auction.id)).current_price == Decimal("100.00")


async def test_per_call_timeout_overrides_default(clock, notifier, make_auction):
    store = StallingStore()
    service = BiddingService(store, notifier, clock, store_timeout=None)
    auction = await make_auction(service=service)

    with pytest.raises(ServiceUnavailable):
        await service.place_bid(auction.id, uuid4(), "105.00", timeout=0.05)


class UnavailableStore(InMemoryAuctionStore):
    async def get_auction(self, auction_id):
        raise StoreUnavailable("connection refused")


async def test_store_outage_surfaces_unavailable(clock, notifier):
    service = BiddingService(UnavailableStore(), notifier, clock)

    with pytest.raises(ServiceUnavailable) as exc_info:
        await service.place_bid(uuid4(), uuid4(), "105.00")

    assert exc_info.value.code == "unavailable"
    assert exc_info.value.retryable


async def test_concurrent_settlement_settles_once(
    service, store, notifier, auction, clock
):
    await service.place_bid(auction.id, uuid4(), "105.00")
    winner = await service.place_bid(auction.id, uuid4(), "130.00")
    watcher = await notifier.subscribe(auction_topic(auction.id))
    clock.advance(hours=2)

    results = await asyncio.gather(*(service.settle(auction.id) for _ in range(8)))

    assert sum(result.settled for result in results) == 1
    assert {result.winner_id for result in results} == {winner.bidder_id}
    assert {result.final_price for result in results} == {Decimal("130.00")}
    assert [type(e) for e in watcher.pending()] == [AuctionEnded]
    assert (await store.get_auction(auction.id)).status is AuctionStatus.ENDED


async def test_bids_racing_the_deadline_never_follow_settlement(
    clock, notifier, make_auction
):
    store = InMemoryAuctionStore(latency=0.001)
    service = BiddingService(store, notifier, clock)
    auction = await make_auction(service=service)
    await service.place_bid(auction.id, uuid4(), "105.00")
    clock.advance(hours=1)

    results = await asyncio.gather(
        service.settle(auction.id),
        *(service.place_bid(auction.id, uuid4(), Decimal(200 + i)) for i in range(5)),
        return_exceptions=True,
    )

    assert all(
        isinstance(r, BidRejected) and r.reason is RejectionReason.AUCTION_CLOSED
        for r in results[1:]
    )
    final = await store.get_auction(auction.id)
    assert final.status is AuctionStatus.ENDED
    assert final.current_price == Decimal("105.00")
