import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column

from teamperf.database import Base


class UserLevel(str, Enum):
    """Membership level, declared lowest first."""
    NORMAL = "NORMAL"
    VIP = "VIP"
    STAR_1 = "STAR_1"
    STAR_2 = "STAR_2"
    STAR_3 = "STAR_3"
    STAR_4 = "STAR_4"
    STAR_5 = "STAR_5"
    DIRECTOR = "DIRECTOR"

    @property
    def rank(self) -> int:
        return LEVEL_ORDER.index(self)

    def next_level(self) -> Optional["UserLevel"]:
        """Next upgrade target. NORMAL and VIP both progress straight to STAR_1."""
        if self in (UserLevel.NORMAL, UserLevel.VIP):
            return UserLevel.STAR_1
        if self is UserLevel.DIRECTOR:
            return None
        return LEVEL_ORDER[self.rank + 1]

    @classmethod
    def at_least(cls, level: "UserLevel") -> list["UserLevel"]:
        return LEVEL_ORDER[level.rank:]


LEVEL_ORDER = list(UserLevel)

# Levels that take part in leaderboards and cache warmup
RANKED_LEVELS = [level.value for level in UserLevel.at_least(UserLevel.VIP)]


class UserStatus(str, Enum):
    """Soft status; users are never hard-deleted."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class User(Base):
    """
    Member of the referral network.

    team_path is the materialized path of the user's ancestors followed by
    the user itself, e.g. "/root/A/B/" for B referred by A. Every descendant's
    path starts with its ancestor's path, so a subtree is one prefix query.
    """
    __tablename__ = "users"
    __table_args__ = (
        Index('ix_user_level_status', 'level', 'status'),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    nickname: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    level: Mapped[str] = mapped_column(
        String(20),
        default="NORMAL",
        nullable=False,
        comment="NORMAL, VIP, STAR_1..STAR_5, DIRECTOR"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default="ACTIVE",
        nullable=False,
        comment="ACTIVE, INACTIVE"
    )

    # Referral tree
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    team_path: Mapped[str] = mapped_column(String(1024), nullable=False, index=True)

    # Denormalized counters
    points_balance: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    direct_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    team_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<User {self.id} {self.level}>"
