"""SQLAlchemy-backed auction store (PostgreSQL via asyncpg in production)."""

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auction_service.core.exceptions import (
    ConflictError,
    NotFoundError,
    StoreUnavailable,
)
from auction_service.models.auction import Auction
from auction_service.models.bid import Bid
from auction_service.models.enums import AuctionStatus, BidOrder, BidStatus
from auction_service.schemas.auction import AuctionFilters, AuctionSchema
from auction_service.schemas.bid import BidSchema
from auction_service.services.store import AuctionStore, AuctionTransaction, Mutator, T

logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(f"Integrity violation: {exc.orig}") from exc
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        logger.warning("Database unavailable: %s", exc)
        raise StoreUnavailable(str(exc)) from exc


def _bid_ordering(order: BidOrder) -> tuple:
    if order is BidOrder.AMOUNT_DESC:
        return (Bid.amount.desc(), Bid.created_at.asc())
    if order is BidOrder.CREATED_ASC:
        return (Bid.created_at.asc(),)
    return (Bid.created_at.desc(),)


class _SqlTransaction(AuctionTransaction):
    def __init__(self, db: AsyncSession, auction: AuctionSchema):
        self._db = db
        self.auction = auction
        self.changes: dict[str, Any] = {}
        self.dirty = False

    async def winning_bid(self) -> BidSchema | None:
        result = await self._db.execute(
            select(Bid).where(
                Bid.auction_id == self.auction.id, Bid.status == BidStatus.WINNING
            )
        )
        row = result.scalar_one_or_none()
        return BidSchema.model_validate(row) if row is not None else None

    async def list_bids(
        self, statuses: Iterable[BidStatus] | None = None
    ) -> list[BidSchema]:
        stmt = select(Bid).where(Bid.auction_id == self.auction.id)
        if statuses is not None:
            stmt = stmt.where(Bid.status.in_(list(statuses)))
        result = await self._db.execute(
            stmt.order_by(*_bid_ordering(BidOrder.AMOUNT_DESC))
        )
        return [BidSchema.model_validate(row) for row in result.scalars().all()]

    async def insert_bid(self, bid: BidSchema) -> BidSchema:
        self._db.add(Bid(**bid.model_dump()))
        await self._db.flush()
        self.dirty = True
        return bid

    async def update_bid_status(self, bid_id: UUID, status: BidStatus) -> None:
        result = await self._db.execute(
            update(Bid)
            .where(Bid.id == bid_id, Bid.auction_id == self.auction.id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"Bid {bid_id} not found")
        self.dirty = True

    def update_auction(self, **changes: Any) -> AuctionSchema:
        self.changes.update(changes)
        self.auction = self.auction.model_copy(update=changes)
        return self.auction


class SqlAlchemyAuctionStore(AuctionStore):
    """
    Store backed by an async SQLAlchemy session factory.

    ``update_auction_atomic`` locks the auction row (``SELECT ... FOR UPDATE``
    where the dialect supports it) and commits only if the row's ``version``
    is unchanged, so two writers can never both commit against the same
    snapshot.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_auction(self, auction_id: UUID) -> AuctionSchema:
        with _translate_errors():
            async with self._session_factory() as db:
                row = await db.get(Auction, auction_id)
                if row is None:
                    raise NotFoundError(f"Auction {auction_id} not found")
                return AuctionSchema.model_validate(row)

    async def create_auction(self, auction: AuctionSchema) -> AuctionSchema:
        with _translate_errors():
            async with self._session_factory() as db:
                db.add(Auction(**auction.model_dump(), version=0))
                await db.commit()
        return auction

    async def list_auctions(self, filters: AuctionFilters) -> list[AuctionSchema]:
        stmt = select(Auction)
        if filters.status is not None:
            stmt = stmt.where(Auction.status == filters.status)
        if filters.seller_id is not None:
            stmt = stmt.where(Auction.seller_id == filters.seller_id)
        if filters.winner_id is not None:
            stmt = stmt.where(Auction.winner_id == filters.winner_id)
        if filters.category_id is not None:
            stmt = stmt.where(Auction.category_id == filters.category_id)
        if filters.min_price is not None:
            stmt = stmt.where(Auction.current_price >= filters.min_price)
        if filters.max_price is not None:
            stmt = stmt.where(Auction.current_price <= filters.max_price)
        if filters.ends_before is not None:
            stmt = stmt.where(Auction.end_time <= filters.ends_before)
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(
                or_(Auction.title.ilike(pattern), Auction.description.ilike(pattern))
            )

        sort_column = getattr(Auction, filters.sort_by)
        if filters.sort_order == "desc":
            stmt = stmt.order_by(sort_column.desc(), Auction.id.desc())
        else:
            stmt = stmt.order_by(sort_column.asc(), Auction.id.asc())
        stmt = stmt.offset(filters.offset).limit(filters.limit)

        with _translate_errors():
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return [AuctionSchema.model_validate(row) for row in result.scalars()]

    async def count_bids(self, auction_ids: Sequence[UUID]) -> dict[UUID, int]:
        counts = {auction_id: 0 for auction_id in auction_ids}
        if not counts:
            return counts
        with _translate_errors():
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Bid.auction_id, func.count(Bid.id))
                    .where(Bid.auction_id.in_(list(counts)))
                    .group_by(Bid.auction_id)
                )
                for auction_id, count in result.all():
                    counts[auction_id] = count
        return counts

    async def list_bids(
        self,
        *,
        auction_id: UUID | None = None,
        bidder_id: UUID | None = None,
        statuses: Iterable[BidStatus] | None = None,
        order: BidOrder = BidOrder.AMOUNT_DESC,
    ) -> list[BidSchema]:
        stmt = select(Bid)
        if auction_id is not None:
            stmt = stmt.where(Bid.auction_id == auction_id)
        if bidder_id is not None:
            stmt = stmt.where(Bid.bidder_id == bidder_id)
        if statuses is not None:
            stmt = stmt.where(Bid.status.in_(list(statuses)))
        stmt = stmt.order_by(*_bid_ordering(order))

        with _translate_errors():
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return [BidSchema.model_validate(row) for row in result.scalars()]

    async def update_auction_atomic(
        self,
        auction_id: UUID,
        expected_status: AuctionStatus,
        mutator: Mutator[T],
    ) -> T:
        with _translate_errors():
            async with self._session_factory() as db:
                async with db.begin():
                    result = await db.execute(
                        select(Auction).where(Auction.id == auction_id).with_for_update()
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        raise NotFoundError(f"Auction {auction_id} not found")
                    if row.status != expected_status:
                        raise ConflictError(
                            f"Auction {auction_id} is {row.status.value}, "
                            f"expected {expected_status.value}"
                        )

                    version = row.version
                    tx = _SqlTransaction(db, AuctionSchema.model_validate(row))
                    outcome = await mutator(tx)

                    if tx.changes or tx.dirty:
                        updated = await db.execute(
                            update(Auction)
                            .where(
                                Auction.id == auction_id,
                                Auction.version == version,
                                Auction.status == expected_status,
                            )
                            .values(
                                **tx.changes,
                                version=version + 1,
                                updated_at=datetime.now(timezone.utc),
                            )
                            .execution_options(synchronize_session=False)
                        )
                        if updated.rowcount != 1:
                            raise ConflictError(
                                f"Auction {auction_id} changed concurrently"
                            )
        return outcome
