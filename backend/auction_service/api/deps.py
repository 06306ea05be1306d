from fastapi import Request

from auction_service.services.bidding_service import BiddingService


async def get_bidding_service(request: Request) -> BiddingService:
    """FastAPI Dependency: Provide the bidding service built at startup"""
    service = getattr(request.app.state, "bidding_service", None)
    if service is None:
        raise RuntimeError("Bidding service is not initialised. Check app lifespan.")
    return service
