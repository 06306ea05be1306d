from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from auction_service.core.database import Base
from auction_service.models.enums import AuctionStatus

if TYPE_CHECKING:
    from auction_service.models.bid import Bid


class Auction(Base):
    """Auction ORM model"""

    __tablename__ = "auctions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    seller_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    category_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    starting_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    current_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # Never shown to bidders
    reserve_price: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True
    )

    end_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    status: Mapped[AuctionStatus] = mapped_column(
        Enum(
            AuctionStatus,
            native_enum=False,
            length=16,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=AuctionStatus.ACTIVE,
        index=True,
    )
    winner_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # Bumped on every atomic update; concurrent writers race on it
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    bids: Mapped[list["Bid"]] = relationship("Bid", back_populates="auction")

    def __repr__(self) -> str:
        return f"<Auction(id={self.id}, title={self.title}, status={self.status})>"
