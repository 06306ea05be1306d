from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Numeric, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from auction_service.core.database import Base
from auction_service.models.enums import BidStatus

if TYPE_CHECKING:
    from auction_service.models.auction import Auction


class Bid(Base):
    """Bid ORM model"""

    __tablename__ = "bids"
    __table_args__ = (
        # Highest-first bid history per auction
        Index("ix_bids_auction_amount", "auction_id", "amount"),
        # At most one winning bid per auction, enforced by the database as well
        Index(
            "uq_bids_auction_winning",
            "auction_id",
            unique=True,
            postgresql_where=text("status = 'winning'"),
            sqlite_where=text("status = 'winning'"),
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    auction_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("auctions.id"), nullable=False, index=True
    )
    bidder_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[BidStatus] = mapped_column(
        Enum(
            BidStatus,
            native_enum=False,
            length=16,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=BidStatus.WINNING,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    auction: Mapped["Auction"] = relationship("Auction", back_populates="bids")

    def __repr__(self) -> str:
        return f"<Bid(id={self.id}, auction_id={self.auction_id}, amount={self.amount})>"
