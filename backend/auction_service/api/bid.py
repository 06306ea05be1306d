# auction_service/api/bid.py
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from auction_service.api.deps import get_bidding_service
from auction_service.models.enums import BidStatus
from auction_service.schemas.bid import BidCreate, BidSchema
from auction_service.services.bidding_service import BiddingService

router = APIRouter()


@router.post(
    "/auctions/{auction_id}/bids",
    response_model=BidSchema,
    status_code=status.HTTP_201_CREATED,
)
async def place_bid(
    auction_id: UUID,
    bid_data: BidCreate,
    service: BiddingService = Depends(get_bidding_service),
):
    """
    Place a bid.

    Rejections come back as 4xx with a stable ``code`` (``not_found``,
    ``auction_closed``, ``self_bid``, ``invalid_amount``, ``bid_too_low``);
    ``busy``/``unavailable`` are 503 and safe to retry.
    """
    return await service.place_bid(auction_id, bid_data.bidder_id, bid_data.amount)


@router.get("/auctions/{auction_id}/bids", response_model=list[BidSchema])
async def list_auction_bids(
    auction_id: UUID,
    highest_first: bool = True,
    service: BiddingService = Depends(get_bidding_service),
):
    """Bid history for an auction"""
    return await service.list_bids_for_auction(
        auction_id, order_by_amount_desc=highest_first
    )


@router.get("/bidders/{bidder_id}/bids", response_model=list[BidSchema])
async def list_bidder_bids(
    bidder_id: UUID,
    bid_status: BidStatus | None = Query(None, alias="status"),
    service: BiddingService = Depends(get_bidding_service),
):
    """A bidder's bids, newest first, optionally only one status"""
    return await service.list_bids_for_bidder(bidder_id, status=bid_status)
