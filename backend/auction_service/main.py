# auction_service/main.py
import asyncio
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auction_service.api import auction, bid
from auction_service.core.config import settings
from auction_service.core.database import AsyncSessionLocal, close_db, init_db
from auction_service.core.exceptions import AuctionServiceError
from auction_service.core.redis import redis_client
from auction_service.models.enums import ReservePolicy
from auction_service.services.bidding_service import BiddingService
from auction_service.services.notifier import InMemoryNotifier, Notifier, RedisNotifier
from auction_service.services.sql_store import SqlAlchemyAuctionStore
from auction_service.tasks.settlement_sweep import settlement_sweep_task

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "auction_closed": status.HTTP_409_CONFLICT,
    "bid_too_low": status.HTTP_409_CONFLICT,
    "auction_active": status.HTTP_409_CONFLICT,
    "self_bid": status.HTTP_403_FORBIDDEN,
    "invalid_amount": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "invalid_auction": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "busy": status.HTTP_503_SERVICE_UNAVAILABLE,
    "unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def build_notifier() -> Notifier:
    if settings.NOTIFIER_BACKEND == "memory":
        return InMemoryNotifier()
    await redis_client.connect()
    if not await redis_client.ping():
        logger.warning("Redis ping failed; events will be dropped until it recovers")
    return RedisNotifier(
        redis_client.get_client(), channel_prefix=settings.NOTIFIER_CHANNEL_PREFIX
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup and shutdown events for FastAPI application.
    A service already placed on ``app.state`` (e.g. by tests) is used as is.
    """
    owns_service = getattr(app.state, "bidding_service", None) is None

    if owns_service:
        if settings.AUTO_CREATE_TABLES:
            await init_db()
            logger.info("Database tables ready")
        app.state.bidding_service = BiddingService(
            store=SqlAlchemyAuctionStore(AsyncSessionLocal),
            notifier=await build_notifier(),
            reserve_policy=ReservePolicy(settings.RESERVE_POLICY),
            max_retries=settings.BID_MAX_RETRIES,
            store_timeout=settings.STORE_TIMEOUT_SECONDS,
        )

    sweep_task = asyncio.create_task(
        settlement_sweep_task(
            app.state.bidding_service, interval=settings.SETTLEMENT_SWEEP_INTERVAL
        )
    )
    logger.info("Application started")
    yield

    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        logger.info("Settlement sweep stopped")

    if owns_service:
        await redis_client.disconnect()
        await close_db()
        app.state.bidding_service = None

    logger.info("Application shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    description="Bid admission and settlement for live auctions",
    version=settings.APP_VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(auction.router, prefix="/api", tags=["Auctions"])
app.include_router(bid.router, prefix="/api", tags=["Bidding"])


@app.exception_handler(AuctionServiceError)
async def service_error_handler(request: Request, exc: AuctionServiceError):
    """Return the stable error code; clients branch on it, not on the message"""
    status_code = ERROR_STATUS_CODES.get(
        exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors with detailed info"""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"code": "invalid_request", "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to log and return detailed errors"""
    logger.error(f"Unhandled exception: {exc}")
    logger.error(f"Request: {request.method} {request.url}")
    logger.error(f"Traceback: {traceback.format_exc()}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "internal_error",
            "detail": str(exc),
            "type": type(exc).__name__,
            "traceback": traceback.format_exc().split("\n") if app.debug else None,
        },
    )


@app.get("/")
async def root():
    """Root endpoint - health check"""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    redis_status = await redis_client.ping()
    return {
        "status": "healthy",
        "notifier": settings.NOTIFIER_BACKEND,
        "redis": "connected" if redis_status else "disconnected",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("auction_service.main:app", host="0.0.0.0", port=8000, reload=True)
