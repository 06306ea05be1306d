from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from auction_service.core.clock import ManualClock
from auction_service.schemas.auction import AuctionCreate
from auction_service.services.bidding_service import BiddingService
from auction_service.services.memory_store import InMemoryAuctionStore
from auction_service.services.notifier import InMemoryNotifier

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def store():
    return InMemoryAuctionStore()


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def service(store, notifier, clock):
    return BiddingService(store, notifier, clock)


@pytest.fixture
def seller_id():
    return uuid4()


@pytest.fixture
def make_auction(service, seller_id, clock):
    """Factory for auctions owned by ``seller_id`` that end in an hour."""

    async def _make(
        starting_price="100.00",
        reserve_price=None,
        duration=timedelta(hours=1),
        service=service,
        **fields,
    ):
        data = AuctionCreate(
            title=fields.pop("title", "Vintage film camera"),
            seller_id=fields.pop("seller_id", seller_id),
            starting_price=Decimal(starting_price),
            reserve_price=Decimal(reserve_price) if reserve_price is not None else None,
            end_time=clock.now() + duration,
            **fields,
        )
        return await service.create_auction(data)

    return _make


@pytest.fixture
async def auction(make_auction):
    return await make_auction()


class BrokenNotifier(InMemoryNotifier):
    async def publish(self, event):
        raise ConnectionError("notifier down")


@pytest.fixture
def broken_notifier():
    return BrokenNotifier()
