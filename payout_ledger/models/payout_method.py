"""Payout method model: where a payee wants to receive money."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from payout_ledger.database import Base
from payout_ledger.db_types import IdType, EnumType
from payout_ledger.core.enum_utils import enum_comment


class PayoutType(str, Enum):
    """Disbursement rail."""
    PAYPAL = "PAYPAL"
    BANK = "BANK"


def new_payout_method_id() -> str:
    return f"pmeth_{uuid.uuid4()}"


class PayoutMethod(Base):
    """One payout method per payee."""
    __tablename__ = "payout_methods"

    id: Mapped[str] = mapped_column(
        IdType,
        primary_key=True,
        default=new_payout_method_id
    )
    payee_id: Mapped[str] = mapped_column(IdType, nullable=False, unique=True, index=True)
    payout_type: Mapped[Optional[str]] = mapped_column(
        EnumType,
        nullable=True,
        comment=enum_comment(PayoutType)
    )
    payout_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

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
        return f"<PayoutMethod(payee_id='{self.payee_id}', payout_type='{self.payout_type}')>"
