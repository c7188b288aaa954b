import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column

from teamperf.database import Base


class OrderStatus(str, Enum):
    """Order status: PENDING -> PAID -> SHIPPED -> DELIVERED, or CANCELLED/REFUNDED."""
    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


# Only these statuses count toward any performance aggregate
QUALIFYING_STATUSES = [
    OrderStatus.PAID.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
]


class Order(Base):
    """
    Order model. Read by the performance subsystem, never written by it.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_seller_status_created', 'seller_id', 'status', 'created_at'),
        Index('ix_order_status_created', 'status', 'created_at'),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    buyer_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    seller_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default="PENDING",
        nullable=False,
        comment="PENDING, PAID, SHIPPED, DELIVERED, CANCELLED, REFUNDED"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.status} {self.total_amount}>"
