"""Ledger line and payout models.

Supports:
- One ledger line (PayoutItem) per payee per order item
- Refund mirror lines with negated amounts
- One Payout per payee per period grouping outstanding lines
- Approver signatures and processor batch references on payouts

All money columns are signed integers in minor currency units.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import String, DateTime, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from payout_ledger.database import Base
from payout_ledger.db_types import IdType, EnumType, JSONType
from payout_ledger.core.enum_utils import decode_enum, enum_comment, status_in


class PayoutStatus(str, Enum):
    """Status shared by ledger lines and payouts."""
    # payout states
    UNPAID = "UNPAID"
    MISSING_PAYOUT_METHOD = "MISSING_PAYOUT_METHOD"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    RETAINED = "RETAINED"               # Platform-owned funds kept, not disbursed
    # refund states
    REFUNDING = "REFUNDING"
    PENDING_REFUND = "PENDING_REFUND"
    REFUNDED = "REFUNDED"


class PayeeType(str, Enum):
    """Party entitled to a share of an order."""
    STORE = "STORE"
    PLATFORM = "PLATFORM"
    BUYER_AFFILIATE = "BUYER_AFFILIATE"
    SELLER_AFFILIATE = "SELLER_AFFILIATE"


def new_payout_item_id() -> str:
    return f"pitem_{uuid.uuid4()}"


def new_refund_item_id() -> str:
    return f"ritem_{uuid.uuid4()}"


def new_payout_id() -> str:
    return f"payout_{uuid.uuid4()}"


class PayoutItem(Base):
    """
    Ledger line: one obligation linking a payee, an order item and an amount.

    Mutated only by status transitions and by being grouped into a payout.
    """
    __tablename__ = "payout_items"
    __table_args__ = (
        Index("ix_payout_items_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        IdType,
        primary_key=True,
        default=new_payout_item_id
    )
    payee_id: Mapped[str] = mapped_column(IdType, nullable=False, index=True)
    payee_type: Mapped[str] = mapped_column(
        EnumType,
        nullable=False,
        default=PayeeType.STORE.value,
        comment=enum_comment(PayeeType)
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_processing_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    status: Mapped[str] = mapped_column(
        EnumType,
        nullable=False,
        default=PayoutStatus.UNPAID.value,
        comment=enum_comment(PayoutStatus)
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    order_item_id: Mapped[str] = mapped_column(IdType, nullable=False, index=True)
    txn_id: Mapped[str] = mapped_column(
        IdType,
        nullable=False,
        index=True,
        comment="Source transaction (sale or refund)"
    )
    payout_id: Mapped[Optional[str]] = mapped_column(IdType, nullable=True, index=True)

    @property
    def payout_status(self) -> PayoutStatus:
        return decode_enum(self.status, PayoutStatus)

    @property
    def payee(self) -> PayeeType:
        return decode_enum(self.payee_type, PayeeType)

    def to_refund(self, created_at: datetime, txn_id: str) -> "PayoutItem":
        """Mirror this line for a refund: new id, negated money, REFUNDING."""
        return PayoutItem(
            id=new_refund_item_id(),
            payee_id=self.payee_id,
            payee_type=self.payee_type,
            amount=-self.amount,
            payment_processing_fee=-self.payment_processing_fee,
            created_at=created_at,
            status=PayoutStatus.REFUNDING.value,
            currency=self.currency,
            order_item_id=self.order_item_id,
            txn_id=txn_id,
            payout_id=None,
        )

    def __repr__(self) -> str:
        return f"<PayoutItem(id='{self.id}', payee_id='{self.payee_id}', amount={self.amount}, status='{self.status}')>"


class Payout(Base):
    """
    Disbursement unit: all outstanding lines of one payee for one period.

    amount equals the sum of the referenced lines' amounts at creation and
    the item set never changes afterwards.
    """
    __tablename__ = "payouts"
    __table_args__ = (
        Index("ix_payouts_payee_period", "payee_id", "period_start", "period_end"),
        Index("ix_payouts_payout_date", "payout_date"),
    )

    id: Mapped[str] = mapped_column(
        IdType,
        primary_key=True,
        default=new_payout_id
    )
    payee_id: Mapped[str] = mapped_column(IdType, nullable=False, index=True)
    payee_type: Mapped[str] = mapped_column(
        EnumType,
        nullable=False,
        comment=enum_comment(PayeeType)
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Period
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payout_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        EnumType,
        nullable=False,
        default=PayoutStatus.PENDING_APPROVAL.value,
        comment=enum_comment(PayoutStatus)
    )
    payout_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    payout_item_ids: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    approver_ids: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    payout_batch_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Processor batch id, set once disbursed"
    )
    paid_to_payment_method_id: Mapped[Optional[str]] = mapped_column(IdType, nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def payout_status(self) -> PayoutStatus:
        return decode_enum(self.status, PayoutStatus)

    @property
    def is_refund(self) -> bool:
        return status_in(self.status, PayoutStatus.PENDING_REFUND, PayoutStatus.REFUNDED)

    def __repr__(self) -> str:
        return f"<Payout(id='{self.id}', payee_id='{self.payee_id}', amount={self.amount}, status='{self.status}')>"
