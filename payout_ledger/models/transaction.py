"""Payment transaction and refund models.

A sale transaction is written together with its ledger lines; a refund
transaction (negated figures) is written together with the Refund record and
the mirror ledger lines.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import String, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from payout_ledger.database import Base
from payout_ledger.db_types import IdType, JSONType


class Transaction(Base):
    """Money movement with the processor, in minor units."""
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(
        IdType,
        primary_key=True,
        default=lambda: f"txn_{uuid.uuid4()}"
    )
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    taxes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_processing_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    order_id: Mapped[Optional[str]] = mapped_column(IdType, nullable=True, index=True)
    customer_id: Mapped[Optional[str]] = mapped_column(IdType, nullable=True)
    payment_processor: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    refund_id: Mapped[Optional[str]] = mapped_column(IdType, nullable=True)
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<Transaction(id='{self.id}', subtotal={self.subtotal}, order_id='{self.order_id}')>"


class Refund(Base):
    """Refund of some order items, already issued by the card processor."""
    __tablename__ = "refunds"

    id: Mapped[str] = mapped_column(IdType, primary_key=True)
    transaction_id: Mapped[str] = mapped_column(IdType, nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(IdType, nullable=False, index=True)
    order_item_ids: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reason_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Refund(id='{self.id}', order_id='{self.order_id}')>"
