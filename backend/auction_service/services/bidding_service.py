import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime
from decimal import Decimal, InvalidOperation
from functools import partial
from typing import TypeVar
from uuid import UUID, uuid4

from auction_service.core.clock import Clock, SystemClock
from auction_service.core.exceptions import (
    AuctionNotActive,
    AuctionNotFound,
    AuctionStillActive,
    BidRejected,
    ConflictError,
    InvalidAuction,
    NotFoundError,
    RejectionReason,
    ServiceBusy,
    ServiceUnavailable,
    StoreUnavailable,
)
from auction_service.models.enums import (
    AuctionStatus,
    BidOrder,
    BidStatus,
    ReservePolicy,
)
from auction_service.schemas.auction import (
    AuctionCreate,
    AuctionDetail,
    AuctionFilters,
    AuctionListing,
    AuctionSchema,
    SettlementResult,
)
from auction_service.schemas.bid import BidSchema
from auction_service.schemas.events import (
    AuctionCancelled,
    AuctionCreated,
    AuctionEnded,
    AuctionEvent,
    BidAccepted,
    BidOutbid,
)
from auction_service.services.notifier import Notifier
from auction_service.services.store import AuctionStore, AuctionTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

CENT = Decimal("0.01")
# Upper bound of the Numeric(12, 2) money columns
MAX_AMOUNT = Decimal("1e10")
OPEN_BID_STATUSES = (BidStatus.ACTIVE, BidStatus.WINNING, BidStatus.OUTBID)


def format_money(amount: Decimal) -> str:
    return f"${amount.quantize(CENT)}"


def parse_amount(amount: object) -> Decimal | None:
    """Coerce a bid amount, returning None for anything that is not a number."""
    if isinstance(amount, bool):
        return None
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, (int, float, str)):
        try:
            return Decimal(str(amount))
        except InvalidOperation:
            return None
    return None


def reserve_met(auction: AuctionSchema) -> bool | None:
    if auction.reserve_price is None:
        return None
    return auction.current_price >= auction.reserve_price


class BiddingService:
    """
    Sole writer of auction pricing, auction status and bid status.

    Bids are admitted through ``AuctionStore.update_auction_atomic`` so the
    read-compare-write on ``current_price`` happens against locked state;
    settlement uses the same primitive, and whichever caller wins the
    ``active -> ended`` transition performs it. Events are published after
    the write commits and never undo it.
    """

    def __init__(
        self,
        store: AuctionStore,
        notifier: Notifier,
        clock: Clock | None = None,
        *,
        reserve_policy: ReservePolicy = ReservePolicy.IGNORE,
        max_retries: int = 3,
        store_timeout: float | None = 5.0,
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.reserve_policy = reserve_policy
        self.max_retries = max_retries
        self.store_timeout = store_timeout

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        """Await a store call under a deadline, mapping transient failures."""
        limit = timeout if timeout is not None else self.store_timeout
        try:
            return await asyncio.wait_for(awaitable, limit)
        except asyncio.TimeoutError:
            raise ServiceUnavailable(
                f"Auction store did not respond within {limit}s"
            ) from None
        except StoreUnavailable as exc:
            raise ServiceUnavailable(f"Auction store unavailable: {exc}") from exc

    async def _publish(self, *events: AuctionEvent) -> None:
        for event in events:
            try:
                await self.notifier.publish(event)
            except Exception:
                # Delivery is best-effort; the write already committed
                logger.exception(
                    "Failed to publish %s for auction %s",
                    type(event).__name__,
                    event.auction_id,
                )

    async def _load(self, auction_id: UUID, timeout: float | None) -> AuctionSchema:
        try:
            return await self._call(self.store.get_auction(auction_id), timeout)
        except NotFoundError:
            raise AuctionNotFound(f"Auction {auction_id} not found") from None

    def _is_expired(self, auction: AuctionSchema, now: datetime) -> bool:
        return auction.status is AuctionStatus.ACTIVE and now >= auction.end_time

    async def _refresh(
        self, auction: AuctionSchema, timeout: float | None
    ) -> AuctionSchema:
        """Settle an expired active auction so readers never see it as active."""
        if not self._is_expired(auction, self.clock.now()):
            return auction
        await self.settle(auction.id, timeout=timeout)
        return await self._load(auction.id, timeout)

    # ------------------------------------------------------------------
    # Auction lifecycle
    # ------------------------------------------------------------------

    async def create_auction(
        self, data: AuctionCreate, *, timeout: float | None = None
    ) -> AuctionSchema:
        now = self.clock.now()
        if not data.title.strip():
            raise InvalidAuction("Title must not be blank")
        if data.starting_price <= 0:
            raise InvalidAuction("Starting price must be positive")
        if data.reserve_price is not None and data.reserve_price < 0:
            raise InvalidAuction("Reserve price must not be negative")
        if data.end_time <= now:
            raise InvalidAuction("End time must be in the future")

        auction = AuctionSchema(
            id=uuid4(),
            title=data.title.strip(),
            description=data.description,
            seller_id=data.seller_id,
            category_id=data.category_id,
            starting_price=data.starting_price,
            current_price=data.starting_price,
            reserve_price=data.reserve_price,
            end_time=data.end_time,
            status=AuctionStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        auction = await self._call(self.store.create_auction(auction), timeout)
        logger.info("Auction %s created by seller %s", auction.id, auction.seller_id)

        await self._publish(
            AuctionCreated(
                auction_id=auction.id,
                occurred_at=now,
                seller_id=auction.seller_id,
                title=auction.title,
                starting_price=auction.starting_price,
                end_time=auction.end_time,
            )
        )
        return auction

    async def cancel_auction(
        self, auction_id: UUID, *, timeout: float | None = None
    ) -> AuctionSchema:
        """Administratively close an active auction without a winner."""

        async def _cancel(tx: AuctionTransaction) -> AuctionSchema:
            for bid in await tx.list_bids(OPEN_BID_STATUSES):
                await tx.update_bid_status(bid.id, BidStatus.LOST)
            return tx.update_auction(status=AuctionStatus.CANCELLED)

        for attempt in range(1, self.max_retries + 1):
            auction = await self._load(auction_id, timeout)
            if auction.status is AuctionStatus.CANCELLED:
                return auction
            if auction.status is AuctionStatus.ENDED:
                raise AuctionNotActive(f"Auction {auction_id} has already ended")

            try:
                cancelled = await self._call(
                    self.store.update_auction_atomic(
                        auction_id, AuctionStatus.ACTIVE, _cancel
                    ),
                    timeout,
                )
            except ConflictError:
                logger.warning(
                    "Conflict cancelling auction %s (attempt %d/%d)",
                    auction_id,
                    attempt,
                    self.max_retries,
                )
                continue

            logger.info("Auction %s cancelled", auction_id)
            now = self.clock.now()
            await self._publish(
                AuctionCancelled(auction_id=auction_id, occurred_at=now),
                AuctionCancelled(
                    auction_id=auction_id,
                    recipient_id=cancelled.seller_id,
                    occurred_at=now,
                ),
            )
            return cancelled

        raise ServiceBusy(f"Auction {auction_id} could not be cancelled, please retry")

    # ------------------------------------------------------------------
    # Bid admission
    # ------------------------------------------------------------------

    def _check_admissible(
        self,
        auction: AuctionSchema,
        bidder_id: UUID,
        amount: Decimal | None,
        now: datetime,
    ) -> Decimal:
        """Apply the admission rules in their fixed order."""
        if auction.status is not AuctionStatus.ACTIVE:
            raise BidRejected(
                RejectionReason.AUCTION_CLOSED, "This auction is no longer active"
            )
        if now >= auction.end_time:
            raise BidRejected(RejectionReason.AUCTION_CLOSED, "This auction has ended")
        if bidder_id == auction.seller_id:
            raise BidRejected(
                RejectionReason.SELF_BID, "You cannot bid on your own auction"
            )
        if (
            amount is None
            or not amount.is_finite()
            or amount <= 0
            or amount >= MAX_AMOUNT
            or amount != amount.quantize(CENT)
        ):
            raise BidRejected(
                RejectionReason.INVALID_AMOUNT,
                "Bid amount must be a positive amount in whole cents",
            )
        if amount <= auction.current_price:
            raise BidRejected(
                RejectionReason.BID_TOO_LOW,
                "Bid amount must be higher than current highest bid of "
                f"{format_money(auction.current_price)}",
                current_price=auction.current_price,
            )
        return amount

    async def _admit(
        self,
        tx: AuctionTransaction,
        *,
        bid_id: UUID,
        bidder_id: UUID,
        amount: Decimal | None,
    ) -> tuple[BidSchema, BidSchema | None]:
        now = self.clock.now()
        # Re-check against the locked state; the earlier read may be stale
        amount = self._check_admissible(tx.auction, bidder_id, amount, now)

        previous = await tx.winning_bid()
        if previous is not None:
            await tx.update_bid_status(previous.id, BidStatus.OUTBID)
        bid = await tx.insert_bid(
            BidSchema(
                id=bid_id,
                auction_id=tx.auction.id,
                bidder_id=bidder_id,
                amount=amount,
                status=BidStatus.WINNING,
                created_at=now,
            )
        )
        tx.update_auction(current_price=amount)
        return bid, previous

    async def _reject_closed(
        self, auction_id: UUID, rejection: BidRejected, timeout: float | None
    ) -> BidRejected:
        """Settle an auction whose deadline passed so the caller sees it ended."""
        if rejection.reason is RejectionReason.AUCTION_CLOSED:
            try:
                auction = await self._load(auction_id, timeout)
                await self._refresh(auction, timeout)
            except (ServiceBusy, ServiceUnavailable) as exc:
                logger.warning(
                    "Could not settle closed auction %s after rejecting a bid: %s",
                    auction_id,
                    exc,
                )
        return rejection

    async def place_bid(
        self,
        auction_id: UUID,
        bidder_id: UUID,
        amount: Decimal | float | int | str,
        *,
        timeout: float | None = None,
    ) -> BidSchema:
        """
        Admit a bid or raise BidRejected.

        Conflicts with concurrent writers are retried up to ``max_retries``
        times, re-validating each time, before failing with ServiceBusy.
        """
        value = parse_amount(amount)
        bid_id = uuid4()

        for attempt in range(1, self.max_retries + 1):
            try:
                auction = await self._call(self.store.get_auction(auction_id), timeout)
            except NotFoundError:
                raise BidRejected(
                    RejectionReason.NOT_FOUND, f"Auction {auction_id} not found"
                ) from None

            try:
                self._check_admissible(auction, bidder_id, value, self.clock.now())
                bid, previous = await self._call(
                    self.store.update_auction_atomic(
                        auction_id,
                        AuctionStatus.ACTIVE,
                        partial(
                            self._admit,
                            bid_id=bid_id,
                            bidder_id=bidder_id,
                            amount=value,
                        ),
                    ),
                    timeout,
                )
            except BidRejected as rejection:
                logger.info(
                    "Bid on auction %s by %s rejected: %s",
                    auction_id,
                    bidder_id,
                    rejection.code,
                )
                raise await self._reject_closed(auction_id, rejection, timeout)
            except ConflictError:
                logger.warning(
                    "Conflict admitting bid on auction %s (attempt %d/%d)",
                    auction_id,
                    attempt,
                    self.max_retries,
                )
                continue

            logger.info(
                "Bid %s accepted on auction %s at %s", bid.id, auction_id, bid.amount
            )
            await self._publish_admission(bid, previous)
            return bid

        raise ServiceBusy(
            f"Auction {auction_id} is receiving too many bids, please retry"
        )

    async def _publish_admission(
        self, bid: BidSchema, previous: BidSchema | None
    ) -> None:
        events: list[AuctionEvent] = []
        if previous is not None:
            events.append(
                BidOutbid(
                    auction_id=bid.auction_id,
                    recipient_id=previous.bidder_id,
                    occurred_at=bid.created_at,
                    bid_id=previous.id,
                    amount=previous.amount,
                    new_price=bid.amount,
                )
            )
        events.append(
            BidAccepted(
                auction_id=bid.auction_id,
                occurred_at=bid.created_at,
                bid_id=bid.id,
                bidder_id=bid.bidder_id,
                amount=bid.amount,
            )
        )
        await self._publish(*events)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def _close(self, tx: AuctionTransaction, *, now: datetime) -> SettlementResult:
        auction = tx.auction
        if now < auction.end_time:
            raise AuctionStillActive(
                f"Auction {auction.id} is open until {auction.end_time.isoformat()}"
            )

        winning = await tx.winning_bid()
        met = reserve_met(auction)
        winner_id = None
        winning_bid_id = None

        if winning is not None:
            if self.reserve_policy is ReservePolicy.ENFORCE and met is False:
                await tx.update_bid_status(winning.id, BidStatus.LOST)
            else:
                await tx.update_bid_status(winning.id, BidStatus.WON)
                winner_id = winning.bidder_id
                winning_bid_id = winning.id

        for bid in await tx.list_bids([BidStatus.ACTIVE, BidStatus.OUTBID]):
            await tx.update_bid_status(bid.id, BidStatus.LOST)

        tx.update_auction(status=AuctionStatus.ENDED, winner_id=winner_id)
        return SettlementResult(
            auction_id=auction.id,
            status=AuctionStatus.ENDED,
            winner_id=winner_id,
            winning_bid_id=winning_bid_id,
            final_price=auction.current_price,
            reserve_met=met,
            settled=True,
        )

    async def _existing_result(
        self, auction: AuctionSchema, timeout: float | None
    ) -> SettlementResult:
        won = await self._call(
            self.store.list_bids(auction_id=auction.id, statuses=[BidStatus.WON]),
            timeout,
        )
        return SettlementResult(
            auction_id=auction.id,
            status=auction.status,
            winner_id=auction.winner_id,
            winning_bid_id=won[0].id if won else None,
            final_price=auction.current_price,
            reserve_met=reserve_met(auction),
            settled=False,
        )

    async def settle(
        self, auction_id: UUID, *, timeout: float | None = None
    ) -> SettlementResult:
        """
        Close an auction whose deadline has passed and fix its winner.

        Idempotent: an auction that is already ended or cancelled returns its
        recorded outcome with ``settled=False`` and nothing is written.
        """
        for attempt in range(1, self.max_retries + 1):
            auction = await self._load(auction_id, timeout)
            if auction.status is not AuctionStatus.ACTIVE:
                return await self._existing_result(auction, timeout)

            try:
                result = await self._call(
                    self.store.update_auction_atomic(
                        auction_id,
                        AuctionStatus.ACTIVE,
                        partial(self._close, now=self.clock.now()),
                    ),
                    timeout,
                )
            except ConflictError:
                # Either another settler won or a late bid committed first
                logger.warning(
                    "Conflict settling auction %s (attempt %d/%d)",
                    auction_id,
                    attempt,
                    self.max_retries,
                )
                continue

            logger.info(
                "Auction %s settled: winner=%s final_price=%s",
                auction_id,
                result.winner_id,
                result.final_price,
            )
            await self._publish_settlement(auction, result)
            return result

        raise ServiceBusy(f"Auction {auction_id} could not be settled, please retry")

    async def _publish_settlement(
        self, auction: AuctionSchema, result: SettlementResult
    ) -> None:
        now = self.clock.now()
        recipients = [None, auction.seller_id]
        if result.winner_id is not None:
            recipients.append(result.winner_id)
        await self._publish(
            *(
                AuctionEnded(
                    auction_id=auction.id,
                    recipient_id=recipient,
                    occurred_at=now,
                    winner_id=result.winner_id,
                    final_price=result.final_price,
                    # Only the seller learns how the price compared to the reserve
                    reserve_met=(
                        result.reserve_met if recipient == auction.seller_id else None
                    ),
                )
                for recipient in recipients
            )
        )

    async def sweep_expired(
        self, *, timeout: float | None = None
    ) -> list[SettlementResult]:
        """Settle every active auction whose end time has passed."""
        now = self.clock.now()
        results: list[SettlementResult] = []
        offset = 0
        while True:
            expired = await self._call(
                self.store.list_auctions(
                    AuctionFilters(
                        status=AuctionStatus.ACTIVE,
                        ends_before=now,
                        sort_by="end_time",
                        sort_order="asc",
                        limit=100,
                        offset=offset,
                    )
                ),
                timeout,
            )
            for auction in expired:
                try:
                    results.append(await self.settle(auction.id, timeout=timeout))
                except ServiceUnavailable:
                    raise
                except Exception:
                    logger.exception("Error settling auction %s", auction.id)
                    offset += 1
            if len(expired) < 100:
                break
        return results

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_auction(
        self, auction_id: UUID, *, timeout: float | None = None
    ) -> AuctionDetail:
        auction = await self._refresh(await self._load(auction_id, timeout), timeout)
        bids = await self._call(
            self.store.list_bids(auction_id=auction_id, order=BidOrder.AMOUNT_DESC),
            timeout,
        )
        return AuctionDetail(**auction.model_dump(), bids=bids, bid_count=len(bids))

    async def list_auctions(
        self, filters: AuctionFilters | None = None, *, timeout: float | None = None
    ) -> list[AuctionListing]:
        filters = filters or AuctionFilters()
        while True:
            auctions = await self._call(self.store.list_auctions(filters), timeout)
            now = self.clock.now()
            expired = [a for a in auctions if self._is_expired(a, now)]
            if not expired:
                break
            # Settled auctions may leave the requested status, so fetch the page again
            for auction in expired:
                await self.settle(auction.id, timeout=timeout)

        counts = await self._call(
            self.store.count_bids([auction.id for auction in auctions]), timeout
        )
        return [
            AuctionListing(**auction.model_dump(), bid_count=counts.get(auction.id, 0))
            for auction in auctions
        ]

    async def list_active_auctions(
        self, filters: AuctionFilters | None = None, *, timeout: float | None = None
    ) -> list[AuctionListing]:
        filters = (filters or AuctionFilters()).model_copy(
            update={"status": AuctionStatus.ACTIVE}
        )
        return await self.list_auctions(filters, timeout=timeout)

    async def list_bids_for_auction(
        self,
        auction_id: UUID,
        order_by_amount_desc: bool = True,
        *,
        timeout: float | None = None,
    ) -> list[BidSchema]:
        await self._refresh(await self._load(auction_id, timeout), timeout)
        order = BidOrder.AMOUNT_DESC if order_by_amount_desc else BidOrder.CREATED_ASC
        return await self._call(
            self.store.list_bids(auction_id=auction_id, order=order), timeout
        )

    async def list_bids_for_bidder(
        self,
        bidder_id: UUID,
        status: BidStatus | None = None,
        *,
        timeout: float | None = None,
    ) -> list[BidSchema]:
        """A bidder's history, newest first, with expired auctions settled."""
        bids = await self._call(
            self.store.list_bids(bidder_id=bidder_id, order=BidOrder.CREATED_DESC),
            timeout,
        )
        stale = False
        for auction_id in dict.fromkeys(bid.auction_id for bid in bids):
            auction = await self._load(auction_id, timeout)
            if self._is_expired(auction, self.clock.now()):
                await self.settle(auction_id, timeout=timeout)
                stale = True

        if stale or status is not None:
            bids = await self._call(
                self.store.list_bids(
                    bidder_id=bidder_id,
                    statuses=[status] if status is not None else None,
                    order=BidOrder.CREATED_DESC,
                ),
                timeout,
            )
        return bids
