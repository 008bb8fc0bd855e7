"""Revenue-split policy model.

A policy gives one payee a share rate for one role. Policies are time-scoped:
one without expires_at is valid forever, an expired one must never be used.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column

from payout_ledger.database import Base
from payout_ledger.db_types import IdType, EnumType
from payout_ledger.core.enum_utils import decode_enum, enum_comment


class SplitRole(str, Enum):
    """Role a payee plays in an order's revenue split."""
    SELLER = "SELLER"                       # Store selling the item
    SELLER_AFFILIATE = "SELLER_AFFILIATE"   # Affiliate who referred a store
    REFERRED_SELLER = "REFERRED_SELLER"     # Store that was referred by an affiliate
    BUYER_AFFILIATE = "BUYER_AFFILIATE"     # Affiliate who referred the buyer


def new_payout_split_id() -> str:
    return f"psplit_{uuid.uuid4()}"


class RevenueSplitPolicy(Base):
    """
    Time-bounded revenue-share agreement for one payee and role.

    referrer_policy_id points at the SELLER_AFFILIATE policy of whoever
    referred this payee. It is a lookup key only, not an ownership link.
    """
    __tablename__ = "payout_splits"
    __table_args__ = (
        Index("ix_payout_splits_payee_role_created", "payee_id", "role", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        IdType,
        primary_key=True,
        default=new_payout_split_id
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    payee_id: Mapped[str] = mapped_column(IdType, nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        EnumType,
        nullable=False,
        comment=enum_comment(SplitRole)
    )
    rate: Mapped[Decimal] = mapped_column(
        Numeric(6, 4),
        nullable=False,
        comment="Share as a fraction between 0 and 1"
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    referrer_policy_id: Mapped[Optional[str]] = mapped_column(
        IdType,
        nullable=True,
        index=True
    )

    @property
    def split_role(self) -> SplitRole:
        return decode_enum(self.role, SplitRole)

    def __repr__(self) -> str:
        return f"<RevenueSplitPolicy(id='{self.id}', payee_id='{self.payee_id}', role='{self.role}', rate={self.rate})>"
