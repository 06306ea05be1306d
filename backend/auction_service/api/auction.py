# auction_service/api/auction.py
from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from auction_service.api.deps import get_bidding_service
from auction_service.models.enums import AuctionStatus
from auction_service.schemas.auction import (
    AuctionCreate,
    AuctionDetail,
    AuctionFilters,
    AuctionListing,
    AuctionSchema,
    SettlementResult,
)
from auction_service.services.bidding_service import BiddingService

router = APIRouter()

# Sellers' reserve prices never leave the service
HIDDEN_FIELDS = {"reserve_price"}


@router.post(
    "/auctions",
    response_model=AuctionSchema,
    response_model_exclude=HIDDEN_FIELDS,
    status_code=status.HTTP_201_CREATED,
)
async def create_auction(
    body: AuctionCreate,
    service: BiddingService = Depends(get_bidding_service),
):
    """List a new item for auction"""
    return await service.create_auction(body)


@router.get(
    "/auctions",
    response_model=list[AuctionListing],
    response_model_exclude={"__all__": HIDDEN_FIELDS},
)
async def list_auctions(
    active_only: bool = True,
    search: str | None = None,
    category_id: UUID | None = None,
    seller_id: UUID | None = None,
    winner_id: UUID | None = None,
    auction_status: AuctionStatus | None = Query(None, alias="status"),
    min_price: Decimal | None = Query(None, ge=0),
    max_price: Decimal | None = Query(None, ge=0),
    ends_before: datetime | None = None,
    sort_by: Literal["created_at", "end_time", "current_price", "title"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    page: int = 1,
    page_size: int = 50,
    service: BiddingService = Depends(get_bidding_service),
):
    """Browse auctions, active ones only unless ``active_only=false``"""

    # Validate page parameters
    if page < 1:
        page = 1
    if page_size < 1 or page_size > 100:
        page_size = 50

    filters = AuctionFilters(
        search=search,
        category_id=category_id,
        seller_id=seller_id,
        winner_id=winner_id,
        status=auction_status,
        min_price=min_price,
        max_price=max_price,
        ends_before=ends_before,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    if active_only:
        return await service.list_active_auctions(filters)
    return await service.list_auctions(filters)


@router.get(
    "/auctions/{auction_id}",
    response_model=AuctionDetail,
    response_model_exclude=HIDDEN_FIELDS,
)
async def get_auction(
    auction_id: UUID,
    service: BiddingService = Depends(get_bidding_service),
):
    """Auction detail with bid history, highest first"""
    return await service.get_auction(auction_id)


@router.post(
    "/auctions/{auction_id}/cancel",
    response_model=AuctionSchema,
    response_model_exclude=HIDDEN_FIELDS,
)
async def cancel_auction(
    auction_id: UUID,
    service: BiddingService = Depends(get_bidding_service),
):
    """Cancel an active auction; every open bid is marked lost"""
    return await service.cancel_auction(auction_id)


@router.post(
    "/auctions/{auction_id}/settle",
    response_model=SettlementResult,
    response_model_exclude={"reserve_met"},
)
async def settle_auction(
    auction_id: UUID,
    service: BiddingService = Depends(get_bidding_service),
):
    """Settle an auction past its end time. Safe to call repeatedly."""
    return await service.settle(auction_id)
