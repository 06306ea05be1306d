from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from auction_service.core.exceptions import ConflictError
from auction_service.main import app
from auction_service.services.bidding_service import BiddingService
from auction_service.services.memory_store import InMemoryAuctionStore


@pytest.fixture
def client(service):
    app.state.bidding_service = service
    with TestClient(app) as test_client:
        yield test_client
    app.state.bidding_service = None


@pytest.fixture
def seller():
    return str(uuid4())


@pytest.fixture
def created(client, seller, clock):
    response = client.post(
        "/api/auctions",
        json={
            "title": "Vintage film camera",
            "seller_id": seller,
            "starting_price": "100.00",
            "reserve_price": "150.00",
            "end_time": (clock.now() + timedelta(hours=1)).isoformat(),
        },
    )
    assert response.status_code == 201
    return response.json()


def bid(client, auction_id, amount, bidder=None):
    return client.post(
        f"/api/auctions/{auction_id}/bids",
        json={"bidder_id": bidder or str(uuid4()), "amount": amount},
    )


def test_create_auction_hides_reserve(created):
    assert created["status"] == "active"
    assert created["current_price"] == "100.00"
    assert "reserve_price" not in created


def test_create_auction_validation(client, seller, clock):
    response = client.post(
        "/api/auctions",
        json={
            "title": "Free lunch",
            "seller_id": seller,
            "starting_price": "0",
            "end_time": (clock.now() + timedelta(hours=1)).isoformat(),
        },
    )

    assert response.status_code == 422
    assert response.json()["code"] == "invalid_request"


def test_create_auction_in_the_past(client, seller, clock):
    response = client.post(
        "/api/auctions",
        json={
            "title": "Too late",
            "seller_id": seller,
            "starting_price": "10.00",
            "end_time": (clock.now() - timedelta(minutes=1)).isoformat(),
        },
    )

    assert response.status_code == 422
    assert response.json()["code"] == "invalid_auction"


def test_place_bid(client, created):
    bidder = str(uuid4())

    response = bid(client, created["id"], "105.00", bidder)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "winning"
    assert body["amount"] == "105.00"
    assert body["bidder_id"] == bidder


def test_bid_too_low(client, created):
    bid(client, created["id"], "105.00")

    response = bid(client, created["id"], "105.00")

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "bid_too_low"
    assert body["current_price"] == "105.00"
    assert "$105.00" in body["message"]
    assert body["retryable"] is False


@pytest.mark.parametrize(
    ("amount", "status_code", "code"),
    [
        ("-5.00", 422, "invalid_amount"),
        ("1.005", 422, "invalid_amount"),
        ("1e30", 422, "invalid_amount"),
        ("10000000000.00", 422, "invalid_amount"),
    ],
)
def test_invalid_amount(client, created, amount, status_code, code):
    response = bid(client, created["id"], amount)

    assert response.status_code == status_code
    assert response.json()["code"] == code


def test_malformed_amount(client, created):
    response = bid(client, created["id"], "lots")

    assert response.status_code == 422
    assert response.json()["code"] == "invalid_request"


def test_self_bid_forbidden(client, created, seller):
    response = bid(client, created["id"], "200.00", seller)

    assert response.status_code == 403
    assert response.json()["code"] == "self_bid"


def test_unknown_auction(client):
    assert bid(client, uuid4(), "105.00").status_code == 404
    response = client.get(f"/api/auctions/{uuid4()}")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_auction_detail(client, created):
    bid(client, created["id"], "105.00")
    bid(client, created["id"], "110.00")

    response = client.get(f"/api/auctions/{created['id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["bid_count"] == 2
    assert [b["amount"] for b in body["bids"]] == ["110.00", "105.00"]
    assert "reserve_price" not in body


def test_list_auctions(client, created):
    bid(client, created["id"], "105.00")

    response = client.get("/api/auctions", params={"search": "camera"})

    assert response.status_code == 200
    (listing,) = response.json()
    assert listing["id"] == created["id"]
    assert listing["bid_count"] == 1
    assert "reserve_price" not in listing


def test_settle_lifecycle(client, service, created):
    bidder = str(uuid4())
    bid(client, created["id"], "120.00", bidder)

    early = client.post(f"/api/auctions/{created['id']}/settle")
    assert early.status_code == 409
    assert early.json()["code"] == "auction_active"

    service.clock.advance(hours=1)
    settled = client.post(f"/api/auctions/{created['id']}/settle")
    assert settled.status_code == 200
    assert settled.json()["winner_id"] == bidder
    assert settled.json()["settled"] is True
    assert "reserve_met" not in settled.json()

    repeat = client.post(f"/api/auctions/{created['id']}/settle")
    assert repeat.json()["settled"] is False
    assert repeat.json()["winner_id"] == bidder

    late = bid(client, created["id"], "500.00")
    assert late.status_code == 409
    assert late.json()["code"] == "auction_closed"

    active = client.get("/api/auctions").json()
    assert active == []
    ended = client.get(
        "/api/auctions", params={"active_only": "false", "status": "ended"}
    ).json()
    assert [a["id"] for a in ended] == [created["id"]]


def test_bid_histories(client, created):
    bidder = str(uuid4())
    bid(client, created["id"], "105.00", bidder)
    bid(client, created["id"], "110.00")

    by_auction = client.get(
        f"/api/auctions/{created['id']}/bids", params={"highest_first": "false"}
    ).json()
    assert [b["amount"] for b in by_auction] == ["105.00", "110.00"]

    mine = client.get(f"/api/bidders/{bidder}/bids").json()
    assert [b["status"] for b in mine] == ["outbid"]

    winning = client.get(
        f"/api/bidders/{bidder}/bids", params={"status": "winning"}
    ).json()
    assert winning == []


def test_cancel(client, created):
    response = client.post(f"/api/auctions/{created['id']}/cancel")

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert bid(client, created["id"], "105.00").json()["code"] == "auction_closed"


class AlwaysConflicting(InMemoryAuctionStore):
    async def update_auction_atomic(self, auction_id, expected_status, mutator):
        raise ConflictError("lost the race")


def test_busy_is_retryable(clock, notifier):
    store = AlwaysConflicting()
    app.state.bidding_service = BiddingService(store, notifier, clock)
    with TestClient(app) as client:
        auction = client.post(
            "/api/auctions",
            json={
                "title": "Hot item",
                "seller_id": str(uuid4()),
                "starting_price": "10.00",
                "end_time": (clock.now() + timedelta(hours=1)).isoformat(),
            },
        ).json()

        response = bid(client, auction["id"], "11.00")
    app.state.bidding_service = None

    assert response.status_code == 503
    assert response.headers["retry-after"] == "1"
    assert response.json()["code"] == "busy"
    assert response.json()["retryable"] is True


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
