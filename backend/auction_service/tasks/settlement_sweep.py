# auction_service/tasks/settlement_sweep.py
"""Background task that settles auctions once their end time has passed."""

import asyncio
import logging

from auction_service.core.exceptions import ServiceUnavailable
from auction_service.services.bidding_service import BiddingService

logger = logging.getLogger(__name__)


async def settlement_sweep_task(
    service: BiddingService,
    interval: float = 10,
    unavailable_backoff: float = 15,
):
    """
    Periodically settle expired auctions.
    Runs every ``interval`` seconds, waiting longer while the store is down.
    """
    logger.info("Settlement sweep started (interval: %ss)", interval)

    while True:
        try:
            results = await service.sweep_expired()
            settled = [result for result in results if result.settled]
            if settled:
                logger.info("Settled %d expired auctions", len(settled))
        except ServiceUnavailable as e:
            logger.warning(
                "Store unavailable in settlement sweep, waiting %ss: %s",
                unavailable_backoff,
                e,
            )
            await asyncio.sleep(unavailable_backoff)
        except Exception:
            logger.exception("Error in settlement sweep task")
            await asyncio.sleep(interval)
        else:
            await asyncio.sleep(interval)
